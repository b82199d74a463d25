"""DNS challenge coordinator implementation."""

import logging
from typing import Dict, Optional, Sequence, Tuple

from core.interfaces.dns_challenge_interface import IDNSChallengeService
from core.models.certificate import DomainRecord, derive_zone
from core.models.errors import ChallengeError, ValidationError
from core.models.resource import ResourceKind, ResourceRegistry
from infrastructure.aws.route53_client import Route53Client


class DNSChallengeService(IDNSChallengeService):
    """Publishes and retracts the A records that make a domain resolve to the instance."""

    def __init__(self, route53_client: Route53Client, wait_timeout: int = 300, poll_delay: int = 10):
        self.route53_client = route53_client
        self.wait_timeout = wait_timeout
        self.poll_delay = poll_delay
        self.logger = logging.getLogger(__name__)
        self._zones: Dict[str, Tuple[str, str]] = {}

    async def resolve_zones(self, domains: Sequence[str]) -> Dict[str, str]:
        resolved = {}
        for domain in domains:
            zone_id, zone = await self._zone_for(domain)
            resolved[domain] = zone_id
            self.logger.info(f"{domain} -> hosted zone {zone} ({zone_id})")
        return resolved

    async def _zone_for(self, domain: str) -> Tuple[str, str]:
        """Hosted zone for the derived zone, else for the domain itself (a registered apex)."""
        if domain in self._zones:
            return self._zones[domain]

        candidates = [derive_zone(domain.lstrip("*.")), domain.lstrip("*.")]
        for zone in candidates:
            try:
                zone_id = await self.route53_client.find_hosted_zone_id(zone)
            except Exception as e:
                raise ValidationError(f"Hosted zone lookup for {domain} failed: {str(e)}", domain=domain) from e
            if zone_id:
                self._zones[domain] = (zone_id, zone)
                return zone_id, zone

        raise ValidationError(
            f"No hosted zone found for {domain} (tried {', '.join(candidates)})", domain=domain
        )

    async def publish(self, domain: str, address: str, registry: ResourceRegistry) -> DomainRecord:
        try:
            zone_id, zone = await self._zone_for(domain)
        except ValidationError as e:
            raise ChallengeError(str(e), domain=domain) from e

        record = DomainRecord.for_domain(domain, address, zone_id=zone_id, zone=zone)
        registry.record(
            ResourceKind.DNS_RECORD, domain, name=domain, zone_id=zone_id, value=address
        )

        try:
            change_id = await self.route53_client.upsert_a_record(
                zone_id, domain, address, record.ttl
            )
            self.logger.info(f"Published {domain} A {address} (ttl {record.ttl}), waiting for sync")
            await self.route53_client.wait_for_change(
                change_id, max_wait_time=self.wait_timeout, delay=self.poll_delay
            )
        except Exception as e:
            self.logger.error(f"Challenge record for {domain} failed: {str(e)}")
            raise ChallengeError(f"Could not publish A record for {domain}: {str(e)}", domain=domain) from e

        return record

    async def retract(self, domain: str, address: Optional[str] = None) -> bool:
        """Delete the record. A record that now points elsewhere is left alone."""
        try:
            zone_id, _ = await self._zone_for(domain)
            current = await self.route53_client.get_record(zone_id, domain, "A")
            if current is None:
                self.logger.info(f"No A record for {domain}; nothing to retract")
                return False

            values = [r["Value"] for r in current.get("ResourceRecords", [])]
            if address is not None and values != [address]:
                self.logger.warning(
                    f"A record for {domain} now points at {', '.join(values)}; leaving it in place"
                )
                return False

            await self.route53_client.delete_record(zone_id, current)
            self.logger.info(f"Retracted {domain} A {', '.join(values)}")
            return True
        except Exception as e:
            raise ChallengeError(f"Could not retract A record for {domain}: {str(e)}", domain=domain) from e
