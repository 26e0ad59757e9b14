"""Route 53 helpers shared by the DNS custom resources."""
import json

import boto3
from botocore.exceptions import ClientError


def parse_aliases(value):
    """Return the sorted, distinct aliases of an Aliases parameter value.

    The value is a JSON object mapping each workload to its list of aliases,
    or an empty string when no workload has one.
    """
    if not value or not value.strip():
        return []
    by_workload = json.loads(value)
    if not isinstance(by_workload, dict):
        raise ValueError(f"aliases must be a JSON object of workload to aliases: {value}")
    aliases = set()
    for names in by_workload.values():
        if isinstance(names, str):
            names = [names]
        aliases.update(name.strip() for name in names if name and name.strip())
    return sorted(aliases)


def route53_client(role_arn=None):
    """Route 53 client, optionally with credentials of another account's role."""
    if not role_arn:
        return boto3.client("route53")
    creds = boto3.client("sts").assume_role(
        RoleArn=role_arn,
        RoleSessionName="envstack-dns-custom-resource",
    )["Credentials"]
    return boto3.client("route53",
        aws_access_key_id=creds["AccessKeyId"],
        aws_secret_access_key=creds["SecretAccessKey"],
        aws_session_token=creds["SessionToken"],
    )


def find_hosted_zone(route53, domain):
    """Return the ID of the public hosted zone named exactly ``domain``."""
    name = domain.rstrip(".") + "."
    zones = route53.list_hosted_zones_by_name(DNSName=name, MaxItems="1").get("HostedZones", [])
    if not zones or zones[0]["Name"] != name:
        raise LookupError(f"couldn't find a hosted zone named {domain}")
    return zones[0]["Id"].split("/")[-1]


def change_records(route53, zone_id, action, records, comment):
    """Apply one action to a batch of record sets.

    DELETE of a record that is already gone is not an error.
    """
    if not records:
        return
    try:
        route53.change_resource_record_sets(
            HostedZoneId=zone_id,
            ChangeBatch={
                "Comment": comment,
                "Changes": [{"Action": action, "ResourceRecordSet": record} for record in records],
            },
        )
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code")
        if action == "DELETE" and code == "InvalidChangeBatch" and "not found" in str(e):
            print(f"Records in zone {zone_id} already deleted")
            return
        raise
