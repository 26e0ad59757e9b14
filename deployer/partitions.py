"""Region to partition lookup (aws, aws-cn, aws-us-gov, ...)."""

import boto3
from botocore.exceptions import UnknownRegionError

from deployer.errors import PartitionLookupError


def partition_for_region(region: str) -> str:
    """Return the partition ID a region belongs to.

    Raises:
        PartitionLookupError: If the region is not part of any known partition.
    """
    try:
        return boto3.session.Session().get_partition_for_region(region)
    except UnknownRegionError as e:
        raise PartitionLookupError(region) from e
