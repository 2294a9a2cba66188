"""
Apply addon manifests hosted elsewhere to the running cluster.

Each addon is a URL. The manifest is fetched, ``$VAR`` and ``${VAR}``
references are substituted from the environment and the result is applied
with ``kubectl``. A failing addon is logged and reported, the remaining
addons are still applied.
"""
from collections import namedtuple
from string import Template

import urllib3

from kubeboot import ADMIN_CONF
from kubeboot.errors import AddonApplyFailure, CommandError
from kubeboot.util.logger import Logger

LOGGER = Logger(__name__)

AddonResult = namedtuple("AddonResult", ["url", "ok", "error"])


def substitute_env(manifest, env):
    """Replace ``$VAR`` and ``${VAR}`` with values from ``env``.

    References to unknown variables are kept as they are, ``$$`` yields a
    literal ``$``.
    """
    return Template(manifest).safe_substitute(env)


def kubectl_apply(host, path, kubeconfig=ADMIN_CONF):
    """Apply the manifest at ``path`` with kubectl"""
    host.run(["kubectl", "apply", "-f", path],
             env={"KUBECONFIG": kubeconfig})


class Addon:
    """An addon manifest referenced by URL.

    Args:
        url (str): where the manifest is hosted
    """

    def __init__(self, url):
        self.url = url

    def __repr__(self):
        return f"<Addon {self.url}>"

    def fetch(self, http, timeout=30):
        """Download the manifest.

        Raises:
            AddonApplyFailure
        """
        try:
            resp = http.request("GET", self.url, timeout=timeout)
        except urllib3.exceptions.HTTPError as exc:
            raise AddonApplyFailure(f"can't fetch {self.url}: {exc}",
                                    url=self.url)
        if resp.status != 200:
            raise AddonApplyFailure(
                f"fetching {self.url} returned status {resp.status}",
                url=self.url)
        try:
            return resp.data.decode()
        except UnicodeDecodeError as exc:
            raise AddonApplyFailure(
                f"{self.url} is not a UTF-8 manifest: {exc}", url=self.url)

    def apply(self, host, http, env, apply_func=kubectl_apply):
        """Fetch, substitute and apply the manifest.

        The substituted manifest is written to a temporary file, which is
        removed afterwards.

        Raises:
            AddonApplyFailure
        """
        manifest = substitute_env(self.fetch(http), env)
        path = host.mktemp(suffix=".yaml")
        try:
            host.write_file(path, manifest, mode=0o600)
            apply_func(host, path)
        except CommandError as exc:
            raise AddonApplyFailure(f"applying {self.url} failed",
                                    url=self.url, returncode=exc.returncode,
                                    stderr=exc.stderr) from exc
        finally:
            host.remove(path)


class AddonInstaller:
    """Applies a list of addons in their declared order.

    Args:
        host (:class:`kubeboot.provision.host.Host`): the node
        addons (list): the manifest URLs
        env (dict): variables substituted into the manifests
        http (urllib3.PoolManager): used to fetch the manifests
        apply_func (callable): ``apply_func(host, path)`` applies a file
    """

    def __init__(self, host, addons, env=None, http=None,
                 apply_func=kubectl_apply):
        self.host = host
        self.addons = [Addon(url) for url in addons]
        self.env = dict(env or {})
        self.http = http or urllib3.PoolManager()
        self.apply_func = apply_func

    def run(self):
        """Apply all addons.

        Returns:
            list of :class:`AddonResult`, one per addon
        """
        results = []
        for addon in self.addons:
            LOGGER.info("Applying add-on [%s]", addon.url)
            try:
                addon.apply(self.host, self.http, self.env, self.apply_func)
            except AddonApplyFailure as exc:
                LOGGER.error("Add-on [%s] failed: %s", addon.url, exc)
                results.append(AddonResult(addon.url, False, exc))
            else:
                results.append(AddonResult(addon.url, True, None))

        failed = [r.url for r in results if not r.ok]
        if failed:
            LOGGER.warning("%d of %d add-ons failed", len(failed),
                           len(results))
        return results
