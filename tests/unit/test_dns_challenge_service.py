import pytest

from core.models.errors import ChallengeError, ValidationError
from core.models.resource import ResourceKind, ResourceRegistry
from core.services.dns_challenge_service import DNSChallengeService

from fakes import FakeRoute53, client_error


ZONE_ID = "Z0EXAMPLE"


class TestDNSChallengeService:
    """Test cases for DNSChallengeService."""

    def setup_method(self):
        self.registry = ResourceRegistry("certrun-1")

    @pytest.mark.asyncio
    async def test_resolve_zones(self, cloud):
        cloud.zones["apex.net"] = "Z0APEX"
        service = DNSChallengeService(FakeRoute53(cloud))

        zones = await service.resolve_zones(["a.example.com", "apex.net"])

        assert zones == {"a.example.com": ZONE_ID, "apex.net": "Z0APEX"}

    @pytest.mark.asyncio
    async def test_unresolvable_zone(self, cloud):
        service = DNSChallengeService(FakeRoute53(cloud))

        with pytest.raises(ValidationError, match="No hosted zone"):
            await service.resolve_zones(["a.unknown.org"])

    @pytest.mark.asyncio
    async def test_zone_lookup_error(self, cloud):
        cloud.fail("find_hosted_zone_id", client_error("AccessDenied"))
        service = DNSChallengeService(FakeRoute53(cloud))

        with pytest.raises(ValidationError, match="lookup"):
            await service.resolve_zones(["a.example.com"])

    @pytest.mark.asyncio
    async def test_publish_overwrites_with_long_ttl(self, cloud):
        """Publish is an upsert: an existing record is replaced."""
        cloud.records[(ZONE_ID, "a.example.com", "A")] = {
            "Name": "a.example.com.", "Type": "A", "TTL": 60,
            "ResourceRecords": [{"Value": "198.51.100.1"}],
        }
        route53 = FakeRoute53(cloud)
        service = DNSChallengeService(route53)

        record = await service.publish("a.example.com", "203.0.113.10", self.registry)

        stored = cloud.records[(ZONE_ID, "a.example.com", "A")]
        assert stored["ResourceRecords"] == [{"Value": "203.0.113.10"}]
        assert stored["TTL"] == record.ttl == 7200
        assert cloud.count("wait_for_change") == 1

    @pytest.mark.asyncio
    async def test_publish_records_handle_before_change(self, cloud):
        cloud.fail("upsert_a_record", client_error("Throttling"))
        service = DNSChallengeService(FakeRoute53(cloud))

        with pytest.raises(ChallengeError):
            await service.publish("a.example.com", "203.0.113.10", self.registry)

        handle = self.registry.handles(ResourceKind.DNS_RECORD)[0]
        assert handle.resource_id == "a.example.com"
        assert handle.attributes == {"zone_id": ZONE_ID, "value": "203.0.113.10"}

    @pytest.mark.asyncio
    async def test_publish_sync_timeout(self, cloud):
        cloud.fail("wait_for_change", TimeoutError("not in sync"))
        service = DNSChallengeService(FakeRoute53(cloud))

        with pytest.raises(ChallengeError, match="not in sync"):
            await service.publish("a.example.com", "203.0.113.10", self.registry)

    @pytest.mark.asyncio
    async def test_retract(self, cloud):
        service = DNSChallengeService(FakeRoute53(cloud))
        await service.publish("a.example.com", "203.0.113.10", self.registry)

        assert await service.retract("a.example.com", "203.0.113.10") is True
        assert cloud.records == {}
        assert await service.retract("a.example.com", "203.0.113.10") is False

    @pytest.mark.asyncio
    async def test_retract_leaves_repointed_record(self, cloud):
        """A record someone else changed since publication is not ours to delete."""
        service = DNSChallengeService(FakeRoute53(cloud))
        await service.publish("a.example.com", "203.0.113.10", self.registry)
        cloud.records[(ZONE_ID, "a.example.com", "A")]["ResourceRecords"] = [{"Value": "198.51.100.7"}]

        assert await service.retract("a.example.com", "203.0.113.10") is False
        assert (ZONE_ID, "a.example.com", "A") in cloud.records

    @pytest.mark.asyncio
    async def test_retract_failure(self, cloud):
        service = DNSChallengeService(FakeRoute53(cloud))
        await service.publish("a.example.com", "203.0.113.10", self.registry)
        cloud.fail("delete_record", client_error("PriorRequestNotComplete"))

        with pytest.raises(ChallengeError):
            await service.retract("a.example.com", "203.0.113.10")
