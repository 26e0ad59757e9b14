"""Unit tests for the custom resource Lambda handlers.

Route 53 and STS are backed by moto; ACM calls go to a mock since certificate
validation cannot complete offline. Responses to CloudFormation are captured
instead of being sent to the pre-signed URL.
"""
import json
from unittest import mock

import boto3
import pytest
from moto import mock_aws

import cfn_response
import dns_records
from assets.custom_resources.custom_domain import handler as custom_domain
from assets.custom_resources.dns_cert_validator import handler as cert_validator
from assets.custom_resources.dns_delegation import handler as delegation
from deployer.inputs import AppInformation, CreateEnvironmentInput
from stacks.environment.environment_stack import CUSTOM_RESOURCE_TIMEOUT
from stacks.environment.parameters import reconcile_parameters

ROLE_ARN = "arn:aws:iam::123456789012:role/phonetool-DNSDelegationRole"
CERT_ARN = "arn:aws:acm:us-west-2:123456789012:certificate/abc"


@pytest.fixture
def responses(monkeypatch):
    """Capture every response sent back to CloudFormation."""
    sent = []

    def send(event, context, status, data=None, physical_id=None, reason=None):
        sent.append({"status": status, "data": data, "physical_id": physical_id, "reason": reason})

    monkeypatch.setattr(cfn_response, "send", send)
    return sent


@pytest.fixture
def route53():
    with mock_aws():
        yield boto3.client("route53")


def _event(request_type, props, old=None, physical_id=None):
    event = {
        "RequestType": request_type,
        "ResponseURL": "https://cloudformation-custom-resource-response.example.com/",
        "StackId": "arn:aws:cloudformation:us-west-2:123456789012:stack/phonetool-test/abc",
        "RequestId": "req-1",
        "LogicalResourceId": "Resource",
        "ResourceProperties": props,
    }
    if old is not None:
        event["OldResourceProperties"] = old
    if physical_id is not None:
        event["PhysicalResourceId"] = physical_id
    return event


def _zone(route53, name):
    return route53.create_hosted_zone(Name=name, CallerReference=name)["HostedZone"]["Id"].split("/")[-1]


def _records(route53, zone_id, record_type):
    sets = route53.list_resource_record_sets(HostedZoneId=zone_id)["ResourceRecordSets"]
    return {r["Name"].rstrip("."): r for r in sets if r["Type"] == record_type}


def test_send_puts_response_to_presigned_url(monkeypatch):
    """Test the response body and method of the reply to CloudFormation."""
    requests = []

    class Response:
        def __enter__(self):
            return self

        def __exit__(self, *args):
            return False

        def getcode(self):
            return 200

    def urlopen(req):
        requests.append(req)
        return Response()

    monkeypatch.setattr(cfn_response.urllib.request, "urlopen", urlopen)
    context = mock.Mock(log_stream_name="2024/01/01/[$LATEST]abc")
    cfn_response.send(_event("Create", {}), context, cfn_response.FAILED, reason="boom")

    assert requests[0].get_method() == "PUT"
    body = json.loads(requests[0].data)
    assert body["Status"] == "FAILED"
    assert body["Reason"] == "boom"
    assert body["PhysicalResourceId"] == "2024/01/01/[$LATEST]abc"
    assert body["RequestId"] == "req-1"


@pytest.mark.parametrize("value, expected", [
    ("", []),
    ("  ", []),
    ('{"frontend": ["b.example.com", "a.example.com"], "api": ["a.example.com"]}',
     ["a.example.com", "b.example.com"]),
    ('{"frontend": []}', []),
])
def test_parse_aliases(value, expected):
    assert dns_records.parse_aliases(value) == expected


def test_parse_aliases_rejects_plain_list():
    with pytest.raises(ValueError):
        dns_records.parse_aliases('["a.example.com"]')


class TestDNSDelegation:
    PROPS = {
        "DomainName": "phonetool.example.com",
        "SubdomainName": "test.phonetool.example.com",
        "NameServers": ["ns-1.awsdns-01.org", "ns-2.awsdns-02.com"],
        "RootDNSRole": ROLE_ARN,
    }

    def test_create_adds_ns_record(self, route53, responses):
        zone_id = _zone(route53, "phonetool.example.com")
        delegation.on_event(_event("Create", self.PROPS), None)

        assert responses == [{"status": "SUCCESS", "data": None,
                              "physical_id": "test.phonetool.example.com", "reason": None}]
        record = _records(route53, zone_id, "NS")["test.phonetool.example.com"]
        assert [r["Value"] for r in record["ResourceRecords"]] == self.PROPS["NameServers"]

    def test_delete_removes_ns_record(self, route53, responses):
        zone_id = _zone(route53, "phonetool.example.com")
        delegation.on_event(_event("Create", self.PROPS), None)
        delegation.on_event(_event("Delete", self.PROPS, physical_id="test.phonetool.example.com"), None)

        assert [r["status"] for r in responses] == ["SUCCESS", "SUCCESS"]
        assert "test.phonetool.example.com" not in _records(route53, zone_id, "NS")

    def test_missing_app_zone_fails(self, route53, responses):
        delegation.on_event(_event("Create", self.PROPS), None)

        assert responses[0]["status"] == "FAILED"
        assert "couldn't find a hosted zone named phonetool.example.com" in responses[0]["reason"]


class TestCustomDomain:
    def _props(self, aliases, zone_id):
        return {
            "Aliases": json.dumps(aliases),
            "AppDNSRole": ROLE_ARN,
            "AppDNSName": "phonetool.example.com",
            "EnvDNSName": "test.phonetool.example.com",
            "EnvHostedZoneId": zone_id,
            "LoadBalancerDNS": "public-lb-123.us-west-2.elb.amazonaws.com",
            "LoadBalancerHostedZoneID": "Z1H1FL5HABSF5",
        }

    def test_aliases_go_to_matching_zones(self, route53, responses):
        app_zone = _zone(route53, "phonetool.example.com")
        env_zone = _zone(route53, "test.phonetool.example.com")
        props = self._props({"frontend": ["api.test.phonetool.example.com"],
                             "api": ["shop.phonetool.example.com"]}, env_zone)

        custom_domain.on_event(_event("Create", props), None)

        assert responses[0]["status"] == "SUCCESS"
        env_record = _records(route53, env_zone, "A")["api.test.phonetool.example.com"]
        assert env_record["AliasTarget"]["HostedZoneId"] == "Z1H1FL5HABSF5"
        assert "shop.phonetool.example.com" in _records(route53, app_zone, "A")
        assert "shop.phonetool.example.com" not in _records(route53, env_zone, "A")

    def test_update_removes_dropped_aliases(self, route53, responses):
        env_zone = _zone(route53, "test.phonetool.example.com")
        old = self._props({"frontend": ["api.test.phonetool.example.com", "old.test.phonetool.example.com"]}, env_zone)
        new = self._props({"frontend": ["api.test.phonetool.example.com"]}, env_zone)

        custom_domain.on_event(_event("Create", old), None)
        custom_domain.on_event(_event("Update", new, old=old, physical_id="test.phonetool.example.com-aliases"), None)

        assert [r["status"] for r in responses] == ["SUCCESS", "SUCCESS"]
        records = _records(route53, env_zone, "A")
        assert "api.test.phonetool.example.com" in records
        assert "old.test.phonetool.example.com" not in records

    def test_aliases_carried_over_from_deployed_stack(self, route53, responses):
        """Test the Aliases value kept by parameter reconciliation is understood by the handler."""
        app_zone = _zone(route53, "phonetool.example.com")
        env_zone = _zone(route53, "test.phonetool.example.com")
        previous = [{"ParameterKey": "Aliases",
                     "ParameterValue": json.dumps({"frontend": ["shop.phonetool.example.com"]})}]
        params = {param["ParameterKey"]: param["ParameterValue"] for param in reconcile_parameters(
            CreateEnvironmentInput(name="test", app=AppInformation(name="phonetool")), previous)}
        props = dict(self._props({}, env_zone), Aliases=params["Aliases"])

        custom_domain.on_event(_event("Create", props), None)

        assert responses[0]["status"] == "SUCCESS"
        assert "shop.phonetool.example.com" in _records(route53, app_zone, "A")

    def test_no_aliases_is_a_no_op(self, route53, responses):
        env_zone = _zone(route53, "test.phonetool.example.com")
        props = dict(self._props({}, env_zone), Aliases="")

        custom_domain.on_event(_event("Create", props), None)

        assert responses[0]["status"] == "SUCCESS"
        assert _records(route53, env_zone, "A") == {}

    def test_alias_outside_app_domain_fails(self, route53, responses):
        env_zone = _zone(route53, "test.phonetool.example.com")
        custom_domain.on_event(_event("Create", self._props({"frontend": ["example.org"]}, env_zone)), None)

        assert responses[0]["status"] == "FAILED"
        assert "alias example.org is not under domain phonetool.example.com" == responses[0]["reason"]


class TestCertificateValidator:
    PROPS = {
        "AppName": "phonetool",
        "EnvName": "test",
        "DomainName": "test.phonetool.example.com",
        "Aliases": json.dumps({"frontend": ["shop.phonetool.example.com"]}),
        "EnvHostedZoneId": "ZENV",
        "Region": "us-west-2",
        "RootDNSRole": ROLE_ARN,
    }

    @pytest.fixture
    def acm(self, monkeypatch):
        client = mock.Mock()
        client.request_certificate.return_value = {"CertificateArn": CERT_ARN}
        env_record = {"Name": "_a.test.phonetool.example.com.", "Type": "CNAME", "Value": "_b.acm-validations.aws."}
        client.describe_certificate.return_value = {"Certificate": {"DomainValidationOptions": [
            {"DomainName": "test.phonetool.example.com", "ResourceRecord": env_record},
            {"DomainName": "*.test.phonetool.example.com", "ResourceRecord": env_record},
            {"DomainName": "shop.phonetool.example.com", "ResourceRecord": {
                "Name": "_c.shop.phonetool.example.com.", "Type": "CNAME", "Value": "_d.acm-validations.aws."}},
        ]}}
        monkeypatch.setattr(cert_validator, "_acm", lambda region: client)
        monkeypatch.setattr(cert_validator, "_wait_for_validation", lambda acm, arn: None)
        return client

    @pytest.fixture
    def changes(self, monkeypatch):
        applied = []

        def change_records(route53, zone_id, action, records, comment):
            if records:
                applied.append((route53, zone_id, action, [r["Name"] for r in records]))

        monkeypatch.setattr(dns_records, "route53_client", lambda role_arn=None: role_arn or "own-account")
        monkeypatch.setattr(dns_records, "find_hosted_zone", lambda route53, domain: f"Z-{domain}")
        monkeypatch.setattr(dns_records, "change_records", change_records)
        return applied

    def test_create_requests_and_validates_certificate(self, acm, changes, responses):
        cert_validator.on_event(_event("Create", self.PROPS), None)

        kwargs = acm.request_certificate.call_args.kwargs
        assert kwargs["DomainName"] == "test.phonetool.example.com"
        assert kwargs["SubjectAlternativeNames"] == ["*.test.phonetool.example.com", "shop.phonetool.example.com"]
        assert kwargs["ValidationMethod"] == "DNS"
        assert changes == [
            ("own-account", "ZENV", "UPSERT", ["_a.test.phonetool.example.com."]),
            (ROLE_ARN, "Z-phonetool.example.com", "UPSERT", ["_c.shop.phonetool.example.com."]),
        ]
        assert responses == [{"status": "SUCCESS", "data": {"Arn": CERT_ARN},
                              "physical_id": CERT_ARN, "reason": None}]

    def test_aliases_of_every_workload_become_subject_alternative_names(self):
        props = dict(self.PROPS, Aliases=json.dumps({
            "frontend": ["shop.phonetool.example.com", "test.phonetool.example.com"],
            "api": ["api.phonetool.example.com", "shop.phonetool.example.com"],
        }))
        assert cert_validator._subject_alternative_names(props) == [
            "*.test.phonetool.example.com", "api.phonetool.example.com", "shop.phonetool.example.com",
        ]
        assert cert_validator._subject_alternative_names(dict(self.PROPS, Aliases="")) == [
            "*.test.phonetool.example.com",
        ]

    def test_worst_case_wait_fits_in_function_timeout(self):
        record_wait = cert_validator.RECORD_POLL_ATTEMPTS * cert_validator.POLL_INTERVAL
        validation_wait = cert_validator.VALIDATION_MAX_ATTEMPTS * cert_validator.VALIDATION_POLL_DELAY
        assert record_wait + validation_wait < CUSTOM_RESOURCE_TIMEOUT

    def test_update_without_name_changes_keeps_certificate(self, acm, changes, responses):
        cert_validator.on_event(_event("Update", self.PROPS, old=dict(self.PROPS), physical_id=CERT_ARN), None)

        acm.request_certificate.assert_not_called()
        assert responses[0]["physical_id"] == CERT_ARN

    def test_delete_removes_records_and_certificate(self, acm, changes, responses):
        cert_validator.on_event(_event("Delete", self.PROPS, physical_id=CERT_ARN), None)

        acm.delete_certificate.assert_called_once_with(CertificateArn=CERT_ARN)
        assert [c[2] for c in changes] == ["DELETE", "DELETE"]
        assert responses[0]["status"] == "SUCCESS"

    def test_delete_after_failed_create_is_a_no_op(self, acm, changes, responses):
        cert_validator.on_event(_event("Delete", self.PROPS, physical_id="2024/01/01/[$LATEST]abc"), None)

        acm.delete_certificate.assert_not_called()
        assert changes == []
        assert responses[0]["status"] == "SUCCESS"

    def test_request_failure_is_reported(self, acm, changes, responses):
        acm.request_certificate.side_effect = RuntimeError("LimitExceededException")
        cert_validator.on_event(_event("Create", self.PROPS), None)

        assert responses[0]["status"] == "FAILED"
        assert responses[0]["reason"] == "LimitExceededException"
