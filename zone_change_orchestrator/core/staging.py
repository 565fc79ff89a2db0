"""
Staging Manager - Lifecycle of the per-zone changelist

The control plane allows a single changelist per zone and offers no
reservation primitive. Exclusivity is advisory: ``prepare`` always discards
whatever changelist exists and creates a fresh one for the calling run.
"""

import logging
from typing import Dict, Iterable, List, Optional, Union

from ..errors import ConflictError, NotFound, TransientError
from ..providers.dns_client import EdgeDNSClient
from ..utils.cancellation import CancellationToken
from ..utils.retry import RetryPolicy, call_with_retry
from .models import StagingArea
from .mutations import Mutation, encode_mutation

logger = logging.getLogger(__name__)


class StagingManager:
    """Claims, fills and discards changelists."""

    def __init__(
        self,
        client: EdgeDNSClient,
        retry_policy: Optional[RetryPolicy] = None,
        conflict_retries: int = 2,
    ):
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self.conflict_retries = conflict_retries

    def prepare(
        self,
        zone: str,
        owner: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> StagingArea:
        """Discard any existing changelist for ``zone`` and create an empty one."""
        last_conflict = None
        for round_number in range(self.conflict_retries + 1):
            self._discard_existing(zone, token)
            try:
                response = call_with_retry(
                    lambda: self.client.create_changelist(zone),
                    self.retry_policy,
                    f"Create changelist for {zone}",
                    token,
                )
            except ConflictError as e:
                last_conflict = e
                logger.warning(
                    f"Changelist for {zone} was recreated concurrently "
                    f"(round {round_number + 1}/{self.conflict_retries + 1})"
                )
                continue

            area = StagingArea(zone=zone, change_tag=response.get("changeTag"), owner=owner)
            logger.info(f"Changelist created for zone {zone}")
            return area

        raise ConflictError(
            f"Could not claim the changelist for {zone} after "
            f"{self.conflict_retries + 1} attempts: {last_conflict}",
            status=409,
        )

    def _discard_existing(self, zone: str, token: Optional[CancellationToken]) -> None:
        try:
            metadata = call_with_retry(
                lambda: self.client.get_changelist(zone),
                self.retry_policy,
                f"Read changelist for {zone}",
                token,
            )
        except NotFound:
            return

        logger.warning(
            f"Discarding stale changelist for {zone} "
            f"(last modified {metadata.get('lastModifiedDate', 'unknown')})"
        )
        try:
            self.discard(zone, token)
        except TransientError as e:
            raise ConflictError(
                f"Stale changelist for {zone} could not be discarded: {e}", status=409
            ) from e

    def stage(
        self,
        area: StagingArea,
        mutation: Mutation,
        token: Optional[CancellationToken] = None,
    ) -> None:
        """Encode ``mutation`` and append it to the remote changelist."""
        change = encode_mutation(mutation, area.zone)
        try:
            call_with_retry(
                lambda: self.client.add_change(area.zone, change),
                self.retry_policy,
                f"Stage {mutation.describe()}",
                token,
            )
        except NotFound as e:
            raise ConflictError(
                f"Changelist for {area.zone} disappeared while staging", status=409
            ) from e

        area.mutations.append(mutation)
        logger.info(f"Staged {mutation.describe()}")

    def stage_all(
        self,
        area: StagingArea,
        mutations: Iterable[Mutation],
        token: Optional[CancellationToken] = None,
    ) -> None:
        for mutation in mutations:
            self.stage(area, mutation, token)

    def list_staged(
        self, area: StagingArea, token: Optional[CancellationToken] = None
    ) -> List[Dict]:
        """Recordsets as they would look once the changelist is submitted."""
        try:
            return call_with_retry(
                lambda: self.client.list_staged_recordsets(area.zone),
                self.retry_policy,
                f"List staged recordsets for {area.zone}",
                token,
            )
        except NotFound as e:
            raise ConflictError(
                f"Changelist for {area.zone} disappeared", status=409
            ) from e

    def discard(
        self,
        area: Union[StagingArea, str],
        token: Optional[CancellationToken] = None,
    ) -> None:
        """Delete the changelist. A changelist that is already gone is not an error."""
        zone = area.zone if isinstance(area, StagingArea) else area
        try:
            call_with_retry(
                lambda: self.client.discard_changelist(zone),
                self.retry_policy,
                f"Discard changelist for {zone}",
                token,
            )
        except NotFound:
            logger.debug(f"No changelist to discard for {zone}")
            return
        logger.info(f"Changelist discarded for zone {zone}")
