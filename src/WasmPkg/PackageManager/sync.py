# === NAVMAP v1 ===
# {
#   "module": "WasmPkg.PackageManager.sync",
#   "purpose": "Pull and push state machines reconciling registry artifacts with the content store and catalog",
#   "sections": [
#     {"id": "pullresult", "name": "PullResult", "anchor": "class-pullresult", "kind": "class"},
#     {"id": "pushresult", "name": "PushResult", "anchor": "class-pushresult", "kind": "class"},
#     {"id": "interfaceindex", "name": "InterfaceIndex", "anchor": "class-interfaceindex", "kind": "class"},
#     {"id": "syncsession", "name": "SyncSession", "anchor": "class-syncsession", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Registry sync protocol.

Pull::

    ReferenceParsed -> CredentialsResolved -> ManifestFetched
      -> LayersFetched & Verified -> ContentStored -> CatalogUpdated
      -> InterfacesExtracted

Push::

    ReferenceParsed -> CredentialsResolved -> LayersUploaded
      -> ManifestUploaded -> CatalogUpdated

Blobs are verified against their manifest digest before they reach the
content store, and the catalog is written in a single transaction only after
every blob is stored.  An abort at any earlier point (network failure,
integrity error, cancellation) therefore leaves no catalog row behind, only
verified blobs that a later cleanup may reclaim.  The commit runs under the
content store's cleanup lock after re-checking every blob, so a cleanup can
never remove a blob the pull reused without fetching.

Interface extraction is best effort: a component that cannot be decoded, or
a blob that is missing or corrupt, is reported on the result and the pull
still succeeds.

Each :class:`SyncSession` owns its credential resolver, so credentials are
resolved at most once per registry per session and never leak across
sessions.
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from .catalog.store import SQLiteCatalog
from .errors import CorruptError, NotFoundError, ParseFailedError, Stage, UsageError
from .extraction.wit import ExtractionResult, extract_interfaces
from .logging_config import generate_session_id
from .network.client import RegistryTransport
from .network.credentials import CredentialResolver, RegistryAuth
from .oci import Descriptor, ImageManifest, compute_digest, verify_digest
from .reference import Reference, parse_reference
from .settings import DEFAULT_REGISTRY, DEFAULT_TAG
from .storage.content_store import ContentStore

logger = logging.getLogger(__name__)

ReferenceLike = Union[str, Reference]


@dataclass
class PullResult:
    """What a pull did."""

    reference: Reference
    image_id: int
    manifest_digest: str
    fetched: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    wit_interface_id: Optional[int] = None
    interface_count: int = 0
    extraction_error: Optional[str] = None


@dataclass
class PushResult:
    reference: Reference
    image_id: int
    manifest_digest: str
    uploaded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


@dataclass
class InterfaceIndex:
    """Interfaces recorded for one image; ``error`` is set when extraction failed."""

    wit_interface_id: Optional[int] = None
    interface_count: int = 0
    error: Optional[str] = None


class SyncSession:
    """One pull/push session against a set of registries."""

    def __init__(
        self,
        store: ContentStore,
        catalog: SQLiteCatalog,
        transport: RegistryTransport,
        resolver: Optional[CredentialResolver] = None,
        *,
        max_concurrent_layers: int = 4,
        default_registry: str = DEFAULT_REGISTRY,
        default_tag: str = DEFAULT_TAG,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.transport = transport
        self.resolver = resolver or CredentialResolver()
        self.max_concurrent_layers = max(1, max_concurrent_layers)
        self.default_registry = default_registry
        self.default_tag = default_tag
        self.session_id = generate_session_id()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def parse(self, reference: ReferenceLike) -> Reference:
        if isinstance(reference, Reference):
            return reference
        return parse_reference(
            reference, default_registry=self.default_registry, default_tag=self.default_tag
        )

    def credentials(self, registry: str) -> RegistryAuth:
        return self.resolver.resolve(registry)

    def _log_extra(self, reference: Reference, stage: Stage) -> Dict[str, str]:
        return {
            "session_id": self.session_id,
            "reference": reference.whole(),
            "stage": stage.value,
        }

    def _fetch_blob(self, reference: Reference, descriptor: Descriptor, auth: RegistryAuth) -> str:
        data = self.transport.get_blob(reference, descriptor.digest, auth)
        return self.store.put_verified(data, descriptor.digest)

    def _fetch_missing(
        self, reference: Reference, descriptors: List[Descriptor], auth: RegistryAuth
    ) -> None:
        """Fetch, verify and store ``descriptors`` concurrently; the first failure aborts."""
        if not descriptors:
            return
        workers = min(self.max_concurrent_layers, len(descriptors))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="wasmpkg-fetch") as pool:
            futures: List[Future] = [
                pool.submit(self._fetch_blob, reference, descriptor, auth)
                for descriptor in descriptors
            ]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in pending:
                future.cancel()
            for future in futures:
                if future in done:
                    future.result()

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def pull(self, reference: ReferenceLike) -> PullResult:
        """Pull ``reference`` into the content store and catalog.

        Returns:
            :class:`PullResult` with fetched and skipped digests and the
            extraction outcome.

        Raises:
            InvalidReferenceError: If the reference cannot be parsed.
            AuthError: If credentials cannot be resolved or are rejected.
            NotFoundError: If the registry has no such manifest or blob.
            UsageError: If the manifest is an image index.
            IntegrityError: If a blob or the manifest fails verification.
            CollaboratorError: If the registry transport fails.
            StorageError: If a running cleanup holds its lock past the timeout.
        """
        ref = self.parse(reference)
        logger.info(f"Pulling {ref.whole()}", extra=self._log_extra(ref, Stage.RESOLVE))
        auth = self.credentials(ref.registry)

        response = self.transport.get_manifest(ref, auth)
        manifest_bytes = response.text.encode("utf-8")
        if ref.digest:
            verify_digest(manifest_bytes, ref.digest)
        manifest = ImageManifest.parse(response.text)
        manifest_digest = ref.digest or response.digest or compute_digest(manifest_bytes)

        descriptors = manifest.blob_descriptors()
        missing = [d for d in descriptors if not self.store.exists(d.digest)]
        if len(missing) < len(descriptors):
            logger.debug(
                f"Skipping {len(descriptors) - len(missing)} blobs already stored",
                extra=self._log_extra(ref, Stage.FETCH),
            )
        self._fetch_missing(ref, missing, auth)

        # Blobs counted as present above may have been removed by a cleanup
        # since; re-check them and commit while cleanup is locked out.
        with self.store.gc_lock("pull"):
            vanished = [d for d in descriptors if not self.store.exists(d.digest)]
            if vanished:
                logger.warning(
                    f"Re-fetching {len(vanished)} blobs removed by a concurrent cleanup",
                    extra=self._log_extra(ref, Stage.FETCH),
                )
                self._fetch_missing(ref, vanished, auth)
            with self.catalog.transaction():
                image_id = self.catalog.upsert_image(ref, response.text, digest=manifest_digest)
                package_id = self.catalog.record_known_package(ref.registry, ref.repository)
                if ref.tag:
                    self.catalog.record_tag(package_id, ref.tag)

        fetched = missing + [d for d in vanished if d not in missing]
        logger.info(
            f"Stored {ref.whole()} as image {image_id} ({len(fetched)} blobs fetched)",
            extra=self._log_extra(ref, Stage.CATALOG),
        )

        index = self.index_interfaces(ref, image_id, manifest)
        return PullResult(
            reference=ref,
            image_id=image_id,
            manifest_digest=manifest_digest,
            fetched=[d.digest for d in fetched],
            skipped=[d.digest for d in descriptors if d not in fetched],
            wit_interface_id=index.wit_interface_id,
            interface_count=index.interface_count,
            extraction_error=index.error,
        )

    def index_interfaces(
        self, ref: Reference, image_id: int, manifest: ImageManifest
    ) -> InterfaceIndex:
        """Extract an image's interfaces and replace its WIT link and derived rows.

        A component that cannot be decoded, or whose blobs are missing or
        corrupt, leaves the image with no interfaces; the failure is logged
        and reported on the returned :class:`InterfaceIndex`.
        """
        index = InterfaceIndex()
        try:
            extraction: Optional[ExtractionResult] = extract_interfaces(manifest, self.store.get)
        except (ParseFailedError, NotFoundError, CorruptError) as exc:
            logger.warning(
                f"Interface extraction failed for {ref.whole()}: {exc}",
                extra=self._log_extra(ref, Stage.EXTRACT),
            )
            index.error = str(exc)
            extraction = None

        with self.catalog.transaction():
            self.catalog.unlink_interfaces(image_id)
            if extraction is None:
                self.catalog.replace_interfaces(image_id, [])
                return index
            index.wit_interface_id = self.catalog.upsert_wit_interface(
                extraction.wit_text,
                extraction.world_name,
                extraction.import_count,
                extraction.export_count,
                extraction.package_name,
            )
            self.catalog.link_interface(image_id, index.wit_interface_id)
            index.interface_count = self.catalog.replace_interfaces(
                image_id, extraction.interfaces
            )
        return index

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def push(self, reference: ReferenceLike, source: Optional[ReferenceLike] = None) -> PushResult:
        """Publish a locally stored image to ``reference``.

        Args:
            reference: Destination reference.
            source: Local image to publish; defaults to ``reference``.

        Raises:
            UsageError: If the image or one of its blobs is not stored locally.
            AuthError: If credentials cannot be resolved or are rejected.
            CollaboratorError: If the registry transport fails.
        """
        ref = self.parse(reference)
        local_ref = self.parse(source) if source is not None else ref
        image = self.catalog.find_image(local_ref)
        if image is None:
            raise UsageError(
                f"Cannot push {local_ref.whole()}: no such image in the local catalog",
                stage=Stage.RESOLVE,
            )
        manifest = ImageManifest.parse(image.manifest)
        descriptors = manifest.blob_descriptors()
        absent = [d.digest for d in descriptors if not self.store.exists(d.digest)]
        if absent:
            raise UsageError(
                f"Cannot push {local_ref.whole()}: blobs missing locally: {absent}",
                stage=Stage.STORE,
                details={"missing": absent},
            )

        logger.info(f"Pushing {ref.whole()}", extra=self._log_extra(ref, Stage.UPLOAD))
        auth = self.credentials(ref.registry)

        uploaded: List[str] = []
        skipped: List[str] = []
        # Layers first, then the config, so the manifest only ever names present blobs.
        ordered = [d for d in descriptors if d != manifest.config]
        if manifest.config is not None:
            ordered.append(manifest.config)
        for descriptor in ordered:
            if self.transport.blob_exists(ref, descriptor.digest, auth):
                skipped.append(descriptor.digest)
                continue
            self.transport.put_blob(ref, descriptor.digest, self.store.get(descriptor.digest), auth)
            uploaded.append(descriptor.digest)

        remote_digest = self.transport.put_manifest(ref, image.manifest, manifest.media_type, auth)
        manifest_digest = (
            ref.digest
            or remote_digest
            or image.digest
            or compute_digest(image.manifest.encode("utf-8"))
        )

        with self.catalog.transaction():
            image_id = self.catalog.upsert_image(ref, image.manifest, digest=manifest_digest)
            package_id = self.catalog.record_known_package(ref.registry, ref.repository)
            if ref.tag:
                self.catalog.record_tag(package_id, ref.tag)
            if image_id != image.id:
                wit = self.catalog.get_wit_interface_for_image(image.id)
                if wit is not None:
                    self.catalog.link_interface(image_id, wit.id)
                    rows = self.catalog.list_interfaces(image.id)
                    self.catalog.replace_interfaces(
                        image_id, [(row.name, row.interface_type.value) for row in rows]
                    )
        logger.info(
            f"Pushed {ref.whole()} ({len(uploaded)} uploaded, {len(skipped)} already present)",
            extra=self._log_extra(ref, Stage.CATALOG),
        )
        return PushResult(
            reference=ref,
            image_id=image_id,
            manifest_digest=manifest_digest,
            uploaded=uploaded,
            skipped=skipped,
        )

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def list_tags(self, reference: ReferenceLike) -> List[str]:
        """List remote tags and record each on the known package."""
        ref = self.parse(reference)
        auth = self.credentials(ref.registry)
        tags = self.transport.list_tags(ref, auth)
        with self.catalog.transaction():
            package_id = self.catalog.record_known_package(ref.registry, ref.repository)
            for tag in tags:
                self.catalog.record_tag(package_id, tag)
        logger.info(
            f"Recorded {len(tags)} tags for {ref.package()}",
            extra=self._log_extra(ref, Stage.CATALOG),
        )
        return tags


__all__ = ["SyncSession", "PullResult", "PushResult", "InterfaceIndex"]
