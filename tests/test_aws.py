from unittest import mock

import pytest
from botocore.exceptions import ClientError

from kubeboot.cloud.aws import cluster_tag, tag_subnets
from kubeboot.errors import BootstrapError


def test_cluster_tag():
    assert cluster_tag("demo") == {'Key': "kubernetes.io/cluster/demo",
                                   'Value': "shared"}


def test_tag_subnets():
    client = mock.MagicMock()
    tag_subnets(("subnet-1", "subnet-2"), "demo", "eu-central-1",
                client=client)

    client.create_tags.assert_called_once_with(
        Resources=["subnet-1", "subnet-2"],
        Tags=[{'Key': "kubernetes.io/cluster/demo", 'Value': "shared"}])


def test_tag_subnets_creates_client():
    with mock.patch("kubeboot.cloud.aws.boto3") as boto3:
        tag_subnets(["subnet-1"], "demo", "eu-central-1")

    boto3.client.assert_called_once_with("ec2", region_name="eu-central-1")
    boto3.client.return_value.create_tags.assert_called_once()


def test_no_subnets():
    client = mock.MagicMock()
    tag_subnets((), "demo", "eu-central-1", client=client)
    client.create_tags.assert_not_called()


def test_tag_subnets_denied():
    client = mock.MagicMock()
    client.create_tags.side_effect = ClientError(
        {'Error': {'Code': 'UnauthorizedOperation',
                   'Message': 'You are not authorized'}}, 'CreateTags')

    with pytest.raises(BootstrapError, match="UnauthorizedOperation"):
        tag_subnets(["subnet-1"], "demo", "eu-central-1", client=client)
