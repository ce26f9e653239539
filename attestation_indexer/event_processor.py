"""
Event processor for resolved attestations.

Projects attestations of the known schemas into the read model
(users, posts, likes, follows) and applies revocations.
"""

import logging
from typing import Any, Dict, Optional

from attestation_indexer import schemas
from attestation_indexer.errors import DecodeError, ReferentialGap
from attestation_indexer.link_preview import LinkPreviewTask, extract_urls
from attestation_indexer.models import ResolvedAttestation

logger = logging.getLogger(__name__)

# Revocable schema -> entity kind understood by DatabaseAdapter.revoke_record
REVOCATION_KINDS = {
    schemas.POST_SCHEMA: 'post',
    schemas.LIKE_SCHEMA: 'like',
    schemas.FOLLOW_SCHEMA: 'follow',
}


def sanitize_text(text: Optional[str]) -> str:
    """Remove null bytes (PostgreSQL text cannot store them)"""
    if not text:
        return ''
    return text.replace('\x00', '')


class EventProcessor:
    """Process resolved attestations and write them to PostgreSQL"""

    def __init__(self, db, link_previews=None):
        self.db = db
        self.link_previews = link_previews

        self.metrics = {
            'applied': 0,
            'ignored': 0,
            'decode_errors': 0,
            'referential_gaps': 0,
            'users_created': 0,
            'posts_created': 0,
            'likes_created': 0,
            'follows_created': 0,
            'usernames_set': 0,
            'revocations_applied': 0,
            'revocations_missed': 0,
        }

    async def ensure_user(self, user_id: str, created_at: int):
        """Ensure user exists, create if not"""
        if await self.db.ensure_user(user_id, created_at):
            self.metrics['users_created'] += 1
            logger.info(f"Creating new user {user_id}")

    async def apply(self, attestation: ResolvedAttestation) -> bool:
        """
        Project one resolved attestation.

        Returns True when the attestation was handled by a projection, False
        when it was ignored (unknown schema) or skipped (decode error or a
        missing referenced entity). Re-applying the same attestation is a
        no-op.
        """
        if not schemas.is_known(attestation.schema_id):
            self.metrics['ignored'] += 1
            logger.debug(f"Ignoring attestation {attestation.id} with unknown schema {attestation.schema_id}")
            return False

        # Both parties must exist before anything can reference them
        await self.ensure_user(attestation.attester, attestation.time)
        await self.ensure_user(attestation.recipient, attestation.time)

        try:
            decoded = schemas.decode(attestation)

            if isinstance(decoded, schemas.PostAttestation):
                await self._create_post(decoded)
            elif isinstance(decoded, schemas.LikeAttestation):
                await self._create_like(decoded)
            elif isinstance(decoded, schemas.FollowAttestation):
                await self._create_follow(decoded)
            elif isinstance(decoded, schemas.UsernameAttestation):
                await self._set_username(decoded)
            else:
                self.metrics['ignored'] += 1
                return False

        except DecodeError as e:
            self.metrics['decode_errors'] += 1
            logger.warning(
                f"Unable to decode {schemas.schema_name(attestation.schema_id)} attestation "
                f"{attestation.id} (tx {attestation.txid}): {e}"
            )
            return False

        except ReferentialGap as e:
            self.metrics['referential_gaps'] += 1
            logger.info(f"Skipping attestation {attestation.id} (tx {attestation.txid}): {e}")
            return False

        self.metrics['applied'] += 1
        return True

    async def revoke(self, schema_id: str, attestation_id: str, revocation_time: int) -> bool:
        """Mark the entity created by an attestation as revoked (last write wins)"""
        kind = REVOCATION_KINDS.get(schemas.normalize(schema_id))
        if not kind:
            logger.debug(f"Ignoring revocation {attestation_id} for schema {schema_id}")
            return False

        updated = await self.db.revoke_record(kind, attestation_id, revocation_time)
        if updated:
            self.metrics['revocations_applied'] += 1
            logger.info(f"Revoked {kind} {attestation_id} at {revocation_time}")
        else:
            # Creation not indexed (yet); accepted gap, not retried
            self.metrics['revocations_missed'] += 1
            logger.debug(f"Revocation for unknown {kind} {attestation_id} is a no-op")
        return updated

    # ===== Schema Handlers =====

    async def _create_post(self, decoded: schemas.PostAttestation):
        """Create a post"""
        attestation = decoded.attestation
        content = sanitize_text(decoded.content)

        parent_id = None
        if attestation.has_ref and await self.db.post_exists(attestation.ref_id):
            parent_id = attestation.ref_id

        created = await self.db.create_post({
            'id': attestation.id,
            'user_id': attestation.attester,
            'recipient_id': attestation.recipient,
            'content': content,
            'parent_id': parent_id,
            'created_at': attestation.time,
        })
        if not created:
            logger.debug(f"Post {attestation.id} already indexed")
            return

        self.metrics['posts_created'] += 1
        logger.info(f"Creating new post {attestation.id}")

        urls = extract_urls(content)
        if urls and self.link_previews is not None:
            self.link_previews.submit(LinkPreviewTask(attestation.id, urls[0], attestation.time))

    async def _create_like(self, decoded: schemas.LikeAttestation):
        """Create a like if the liked post is indexed"""
        attestation = decoded.attestation

        if not await self.db.post_exists(decoded.post_id):
            raise ReferentialGap(attestation.id, decoded.post_id, 'post')

        if await self.db.create_like({
            'id': attestation.id,
            'user_id': attestation.attester,
            'post_id': decoded.post_id,
            'created_at': attestation.time,
        }):
            self.metrics['likes_created'] += 1
            logger.info(f"Creating new like {attestation.id}")

    async def _create_follow(self, decoded: schemas.FollowAttestation):
        """Create a follow"""
        attestation = decoded.attestation

        if await self.db.create_follow({
            'id': attestation.id,
            'follower_id': decoded.follower_id,
            'following_id': decoded.following_id,
            'created_at': attestation.time,
        }):
            self.metrics['follows_created'] += 1
            logger.info(f"Creating new follow {attestation.id}")

    async def _set_username(self, decoded: schemas.UsernameAttestation):
        attestation = decoded.attestation
        await self.db.set_username(attestation.attester, sanitize_text(decoded.name))
        self.metrics['usernames_set'] += 1
        logger.info(f"Set username for {attestation.attester}")

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics"""
        return dict(self.metrics)
