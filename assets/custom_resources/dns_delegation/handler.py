"""Delegates an environment's subdomain from the application's hosted zone.

The application zone lives in the application account, so its records are
changed through the DNS delegation role passed as RootDNSRole.
"""
import traceback

import cfn_response
import dns_records

NS_TTL = 60


def _ns_record(subdomain, name_servers):
    return {
        "Name": subdomain,
        "Type": "NS",
        "TTL": NS_TTL,
        "ResourceRecords": [{"Value": server} for server in name_servers],
    }


def _apply(props, action):
    route53 = dns_records.route53_client(props["RootDNSRole"])
    zone_id = dns_records.find_hosted_zone(route53, props["DomainName"])
    dns_records.change_records(route53, zone_id, action,
        [_ns_record(props["SubdomainName"], props["NameServers"])],
        comment=f"{action} delegation of {props['SubdomainName']}")


def on_event(event, context):
    request_type = event.get("RequestType", "Create")
    props = event.get("ResourceProperties", {})
    physical_id = props.get("SubdomainName") or event.get("PhysicalResourceId")
    print(f"{request_type} DNS delegation for {physical_id}")

    try:
        if request_type == "Delete":
            _apply(props, "DELETE")
        else:
            old = event.get("OldResourceProperties", {})
            if request_type == "Update" and old.get("SubdomainName") not in (None, props["SubdomainName"]):
                # Renamed subdomain: the old delegation goes once the new one is in place.
                _apply(props, "UPSERT")
                _apply(old, "DELETE")
            else:
                _apply(props, "UPSERT")
    except Exception as e:
        print("Failed to update DNS delegation", traceback.format_exc())
        cfn_response.send(event, context, cfn_response.FAILED, physical_id=physical_id, reason=str(e))
        return

    cfn_response.send(event, context, cfn_response.SUCCESS, physical_id=physical_id)
