"""
AWS integration of the control plane.

The cloud controller finds the subnets it may place load balancers in by
the ``kubernetes.io/cluster/<name>`` tag, so the subnets of the cluster are
tagged before the control plane comes up.
"""
import boto3
from botocore.exceptions import BotoCoreError, ClientError

from kubeboot.errors import BootstrapError
from kubeboot.util.logger import Logger

LOGGER = Logger(__name__)

CLUSTER_TAG = "kubernetes.io/cluster/{}"


def cluster_tag(cluster_name, value="shared"):
    """The EC2 tag marking a resource as used by ``cluster_name``"""
    return {'Key': CLUSTER_TAG.format(cluster_name), 'Value': value}


def tag_subnets(subnets, cluster_name, region, client=None):
    """Tag ``subnets`` as shared with the cluster.

    Tagging is idempotent, an existing tag is overwritten with the same
    value.

    Args:
        subnets (list): the subnet ids
        cluster_name (str): the name of the cluster
        region (str): the AWS region of the subnets
        client: an EC2 client, created with boto3 if not given

    Raises:
        BootstrapError if the AWS API refuses the request.
    """
    if not subnets:
        LOGGER.debug("No subnets to tag")
        return

    client = client or boto3.client("ec2", region_name=region)
    LOGGER.info("Tagging subnets %s with %s", ", ".join(subnets),
                CLUSTER_TAG.format(cluster_name))
    try:
        client.create_tags(Resources=list(subnets),
                           Tags=[cluster_tag(cluster_name)])
    except (BotoCoreError, ClientError) as exc:
        raise BootstrapError(f"tagging subnets failed: {exc}") from exc
