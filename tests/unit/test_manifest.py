"""Unit tests for environment manifest parsing."""
import pytest

from deployer.errors import ManifestError
from deployer.manifest import load_environment_manifest

IMPORTED = b"""
name: prod
type: Environment
network:
  vpc:
    id: vpc-1234
    subnets:
      public:
        - id: subnet-pub1
      private:
        - id: subnet-priv1
        - id: subnet-priv2
http:
  public:
    certificates:
      - arn:aws:acm:us-west-2:123456789012:certificate/pub
  private:
    subnets: [subnet-priv1]
    ingress:
      vpc: true
observability:
  container_insights: false
cdn: true
"""


def test_minimal_manifest_uses_defaults():
    mft = load_environment_manifest(b"name: test\n")
    assert mft.name == "test"
    assert mft.type == "Environment"
    assert not mft.vpc.is_imported
    assert mft.http.public.certificates == ()
    assert mft.observability is None
    assert mft.cdn is False


def test_imported_vpc_manifest():
    mft = load_environment_manifest(IMPORTED)
    assert mft.vpc.is_imported
    assert [s.id for s in mft.vpc.private_subnets] == ["subnet-priv1", "subnet-priv2"]
    assert mft.http.public.certificates == ("arn:aws:acm:us-west-2:123456789012:certificate/pub",)
    assert mft.http.private.subnets == ("subnet-priv1",)
    assert mft.http.private.vpc_ingress is True
    assert mft.observability.container_insights is False
    assert mft.cdn is True


def test_managed_vpc_manifest_keeps_cidrs_and_azs():
    mft = load_environment_manifest(b"""
name: test
network:
  vpc:
    cidr: 10.1.0.0/16
    subnets:
      public: [{cidr: 10.1.0.0/24, az: us-west-2a}]
      private: [{cidr: 10.1.1.0/24, az: us-west-2a}]
""")
    assert mft.vpc.cidr == "10.1.0.0/16"
    assert mft.vpc.public_subnets[0].az == "us-west-2a"
    assert mft.vpc.private_subnets[0].cidr == "10.1.1.0/24"


@pytest.mark.parametrize("raw, message", [
    (b"type: Environment\n", '"name" is required'),
    (b"name: test\ntype: Load Balanced Web Service\n", "is not"),
    (b"name: test\nnetwork:\n  vpc:\n    id: vpc-1\n    cidr: 10.0.0.0/16\n", "both"),
    (b"name: test\nnetwork:\n  vpc:\n    id: vpc-1\n", "at least one subnet"),
    (b"name: test\nnetwork:\n  vpc:\n    subnets:\n      private: [{id: subnet-1}]\n", "requires"),
    (b"name: test\ncdn: yes please\n", '"cdn" must be a boolean'),
    (b"name: test\nhttp:\n  public:\n    certificates: arn\n", "list of strings"),
    (b"- just\n- a list\n", "mapping"),
    (b"name: [unclosed\n", "unmarshal"),
])
def test_invalid_manifests(raw, message):
    with pytest.raises(ManifestError) as ei:
        load_environment_manifest(raw)
    assert message in str(ei.value)
