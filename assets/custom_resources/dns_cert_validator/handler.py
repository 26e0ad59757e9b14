"""Requests an ACM certificate for an environment and validates it over DNS.

The certificate covers the environment domain, its wildcard and any aliases.
Validation records for names under the environment domain go into the
environment hosted zone; the others go into the application's zone through
RootDNSRole. The physical ID of the resource is the certificate ARN.
"""
import hashlib
import time
import traceback

import boto3
from botocore.exceptions import ClientError

import cfn_response
import dns_records

VALIDATION_RECORD_TTL = 60
# Seconds between checks for ACM to publish the validation records.
POLL_INTERVAL = 5
RECORD_POLL_ATTEMPTS = 24
VALIDATION_POLL_DELAY = 30
VALIDATION_MAX_ATTEMPTS = 24


def _acm(region):
    return boto3.client("acm", region_name=region)


def _subject_alternative_names(props):
    domain = props["DomainName"]
    aliases = dns_records.parse_aliases(props.get("Aliases", ""))
    return [f"*.{domain}"] + [a for a in aliases if a != domain]


def _request_certificate(acm, props):
    sans = _subject_alternative_names(props)
    # Same inputs within an hour map to the same certificate.
    token = hashlib.sha256("|".join([props["DomainName"]] + sans).encode("utf-8")).hexdigest()[:32]
    response = acm.request_certificate(
        DomainName=props["DomainName"],
        SubjectAlternativeNames=sans,
        ValidationMethod="DNS",
        IdempotencyToken=token,
        Tags=[
            {"Key": "envstack-application", "Value": props["AppName"]},
            {"Key": "envstack-environment", "Value": props["EnvName"]},
        ],
    )
    return response["CertificateArn"]


def _validation_records(acm, arn, attempts=RECORD_POLL_ATTEMPTS):
    """Wait until ACM publishes a validation record for every name of the certificate."""
    for _ in range(attempts):
        options = acm.describe_certificate(CertificateArn=arn)["Certificate"].get("DomainValidationOptions", [])
        if options and all("ResourceRecord" in o for o in options):
            records = {}
            for option in options:
                record = option["ResourceRecord"]
                records[record["Name"]] = (option["DomainName"], record)
            return list(records.values())
        time.sleep(POLL_INTERVAL)
    raise TimeoutError(f"validation records of certificate {arn} were not published")


def _change_validation_records(acm, arn, props, action):
    env_domain = props["DomainName"]
    env_records, app_records = [], []
    for domain, record in _validation_records(acm, arn):
        record_set = {
            "Name": record["Name"],
            "Type": record["Type"],
            "TTL": VALIDATION_RECORD_TTL,
            "ResourceRecords": [{"Value": record["Value"]}],
        }
        name = domain.lstrip("*.")
        if name == env_domain or name.endswith("." + env_domain):
            env_records.append(record_set)
        else:
            app_records.append(record_set)

    dns_records.change_records(dns_records.route53_client(), props["EnvHostedZoneId"], action,
        env_records, comment=f"{action} validation records of {arn}")
    if app_records:
        route53 = dns_records.route53_client(props["RootDNSRole"])
        app_domain = env_domain.split(".", 1)[1]
        zone_id = dns_records.find_hosted_zone(route53, app_domain)
        dns_records.change_records(route53, zone_id, action,
            app_records, comment=f"{action} validation records of {arn}")


def _wait_for_validation(acm, arn):
    acm.get_waiter("certificate_validated").wait(
        CertificateArn=arn,
        WaiterConfig={"Delay": VALIDATION_POLL_DELAY, "MaxAttempts": VALIDATION_MAX_ATTEMPTS},
    )


def _create(acm, props):
    arn = _request_certificate(acm, props)
    print(f"Requested certificate {arn}")
    _change_validation_records(acm, arn, props, "UPSERT")
    _wait_for_validation(acm, arn)
    return arn


def _delete(acm, arn, props):
    if not arn.startswith("arn:"):
        # Creation failed before a certificate existed.
        return
    try:
        _change_validation_records(acm, arn, props, "DELETE")
        acm.delete_certificate(CertificateArn=arn)
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") != "ResourceNotFoundException":
            raise
        print(f"Certificate {arn} already deleted")


def on_event(event, context):
    request_type = event.get("RequestType", "Create")
    props = event.get("ResourceProperties", {})
    physical_id = event.get("PhysicalResourceId")
    print(f"{request_type} certificate for {props.get('DomainName')}")

    try:
        acm = _acm(props.get("Region"))
        if request_type == "Create":
            physical_id = _create(acm, props)
        elif request_type == "Update":
            old = event.get("OldResourceProperties", {})
            if _subject_alternative_names(old) != _subject_alternative_names(props) \
                    or old.get("DomainName") != props["DomainName"]:
                # A new physical ID makes CloudFormation delete the old certificate.
                physical_id = _create(acm, props)
        elif request_type == "Delete":
            _delete(acm, physical_id or "", props)
    except Exception as e:
        print("Failed to manage certificate", traceback.format_exc())
        cfn_response.send(event, context, cfn_response.FAILED, physical_id=physical_id, reason=str(e))
        return

    cfn_response.send(event, context, cfn_response.SUCCESS,
        data={"Arn": physical_id}, physical_id=physical_id)
