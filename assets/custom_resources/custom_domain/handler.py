"""Points the aliases of an environment at its public load balancer.

Aliases under the environment's own domain go to the environment hosted zone.
Aliases directly under the application's domain go to the application zone,
changed through the DNS delegation role.
"""
import traceback

import cfn_response
import dns_records


def _aliases(props):
    return dns_records.parse_aliases(props.get("Aliases", ""))


def _alias_record(alias, props):
    return {
        "Name": alias,
        "Type": "A",
        "AliasTarget": {
            "HostedZoneId": props["LoadBalancerHostedZoneID"],
            "DNSName": props["LoadBalancerDNS"],
            "EvaluateTargetHealth": True,
        },
    }


def _is_under(alias, domain):
    return alias == domain or alias.endswith("." + domain)


def _group_by_zone(aliases, props):
    """Split aliases into those for the environment zone and the application zone."""
    env_aliases, app_aliases = [], []
    for alias in aliases:
        if _is_under(alias, props["EnvDNSName"]):
            env_aliases.append(alias)
        elif _is_under(alias, props["AppDNSName"]):
            app_aliases.append(alias)
        else:
            raise ValueError(f"alias {alias} is not under domain {props['AppDNSName']}")
    return env_aliases, app_aliases


def _change(aliases, props, action):
    env_aliases, app_aliases = _group_by_zone(aliases, props)
    if env_aliases:
        dns_records.change_records(dns_records.route53_client(), props["EnvHostedZoneId"], action,
            [_alias_record(a, props) for a in env_aliases],
            comment=f"{action} aliases of the environment load balancer")
    if app_aliases:
        route53 = dns_records.route53_client(props["AppDNSRole"])
        zone_id = dns_records.find_hosted_zone(route53, props["AppDNSName"])
        dns_records.change_records(route53, zone_id, action,
            [_alias_record(a, props) for a in app_aliases],
            comment=f"{action} aliases of the environment load balancer")


def on_event(event, context):
    request_type = event.get("RequestType", "Create")
    props = event.get("ResourceProperties", {})
    physical_id = event.get("PhysicalResourceId") or f"{props.get('EnvDNSName', '')}-aliases"
    print(f"{request_type} aliases {props.get('Aliases', '')}")

    try:
        if request_type == "Delete":
            _change(_aliases(props), props, "DELETE")
        else:
            aliases = _aliases(props)
            _change(aliases, props, "UPSERT")
            if request_type == "Update":
                old = event.get("OldResourceProperties", {})
                removed = [a for a in _aliases(old) if a not in aliases]
                if removed:
                    _change(removed, old, "DELETE")
    except Exception as e:
        print("Failed to update aliases", traceback.format_exc())
        cfn_response.send(event, context, cfn_response.FAILED, physical_id=physical_id, reason=str(e))
        return

    cfn_response.send(event, context, cfn_response.SUCCESS, physical_id=physical_id)
