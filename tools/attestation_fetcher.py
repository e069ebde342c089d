from __future__ import annotations

import base64
import binascii
import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3 import Retry

from configuration import Configuration as Config
from loggers.attestation_fetcher_logger import attestation_fetcher_logger as logger


OCI_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"

MANIFEST_ACCEPT = ", ".join([OCI_INDEX, DOCKER_MANIFEST_LIST, OCI_MANIFEST, DOCKER_MANIFEST])
INDEX_TYPES = (OCI_INDEX, DOCKER_MANIFEST_LIST)

_AUTH_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')
_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-fA-F0-9]{32,}$")


class AttestationError(RuntimeError):
    pass


class RegistryNotFoundError(AttestationError):
    pass


# ----------------------------
# Image references
# ----------------------------

@dataclass(frozen=True)
class ImageReference:
    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def reference(self) -> str:
        return self.digest or self.tag or "latest"

    @property
    def name(self) -> str:
        return self.repository.rsplit("/", 1)[-1]


def parse_image_reference(ref: str) -> ImageReference:
    """
    Parse registry/repository[:tag][@digest] with Docker's defaults.

    Accepts:
      cgr.dev/chainguard/unbound:latest
      cgr.dev/chainguard/unbound@sha256:<hex>
      localhost:5000/team/app
      alpine            -> index.docker.io/library/alpine:latest

    Raises:
        ValueError: if the reference is empty or malformed
    """
    s = (ref or "").strip()
    if not s:
        raise ValueError("empty image reference")

    digest: Optional[str] = None
    if "@" in s:
        s, digest = s.split("@", 1)
        if not _DIGEST_RE.match(digest):
            raise ValueError(f"invalid digest in image reference: {ref}")

    tag: Optional[str] = None
    last = s.rsplit("/", 1)[-1]
    if ":" in last:
        s, tag = s.rsplit(":", 1)
        if not tag:
            raise ValueError(f"empty tag in image reference: {ref}")

    first, sep, rest = s.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        registry, repository = first, rest
    else:
        registry, repository = Config.default_registry, s

    if registry in ("docker.io", "index.docker.io"):
        registry = "index.docker.io"
        if "/" not in repository:
            repository = f"library/{repository}"

    if not repository or repository != repository.lower() or "//" in repository:
        raise ValueError(f"invalid repository in image reference: {ref}")

    if digest is None and tag is None:
        tag = "latest"

    return ImageReference(registry=registry, repository=repository, tag=tag, digest=digest)


def is_container_image(value: str) -> bool:
    return "/" in value and not value.endswith(".json")


def default_download_dir(image_ref: str) -> str:
    """
    Directory name for an image's downloads: <name>, <name>-<tag> for non-latest
    tags, or <name>-<first 12 hex digits> for digest references.
    """
    try:
        image = parse_image_reference(image_ref)
    except ValueError:
        return Config.default_download_dir_name

    if image.digest:
        digest_hex = image.digest.split(":", 1)[-1][:12]
        return f"{image.name}-{digest_hex}"
    if image.tag and image.tag != "latest":
        return f"{image.name}-{image.tag}"
    return image.name


# ----------------------------
# Registry client
# ----------------------------

class RegistryClient:
    """
    Minimal OCI distribution client for one repository.

    Handles anonymous bearer-token auth: the first 401 is answered by following
    the WWW-Authenticate challenge, then the request is replayed once.
    """

    def __init__(
        self,
        image: ImageReference,
        *,
        session: Optional[requests.Session] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.image = image
        self.timeout = Config.registry_timeout_seconds if timeout_seconds is None else timeout_seconds

        scheme = "http" if image.registry.startswith(("localhost", "127.0.0.1")) else "https"
        self.base_url = f"{scheme}://{image.registry}/v2/{image.repository}"
        self._token: Optional[str] = None

        if session is None:
            session = requests.Session()
            retries = Retry(
                total=2,
                backoff_factor=0.5,
                status_forcelist=(429, 500, 502, 503, 504),
                allowed_methods=frozenset(["GET", "HEAD"]),
            )
            adapter = HTTPAdapter(max_retries=retries)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
            session.headers.update({"User-Agent": Config.user_agent})
        self.session = session

    def _request(self, url: str, accept: Optional[str] = None) -> requests.Response:
        headers: Dict[str, str] = {}
        if accept:
            headers["Accept"] = accept
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return self.session.get(url, headers=headers, timeout=self.timeout)

    def get(self, path: str, accept: Optional[str] = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            resp = self._request(url, accept)
            if resp.status_code == 401 and self._token is None:
                self._token = self._authenticate(resp.headers.get("WWW-Authenticate", ""))
                resp = self._request(url, accept)
        except requests.RequestException as e:
            raise AttestationError(f"registry request failed for {url}: {e}") from e

        if resp.status_code == 404:
            raise RegistryNotFoundError(f"not found: {url}")
        if resp.status_code >= 400:
            raise AttestationError(f"registry error {resp.status_code} for {url}: {resp.text[:300]}")
        return resp

    def _authenticate(self, challenge: str) -> str:
        if not challenge.lower().startswith("bearer"):
            raise AttestationError(f"unsupported registry auth challenge: {challenge or '<none>'}")

        params = dict(_AUTH_PARAM_RE.findall(challenge))
        realm = params.get("realm")
        if not realm:
            raise AttestationError(f"registry auth challenge has no realm: {challenge}")

        query = {"scope": params.get("scope") or f"repository:{self.image.repository}:pull"}
        if params.get("service"):
            query["service"] = params["service"]

        resp = self.session.get(realm, params=query, timeout=self.timeout)
        if resp.status_code >= 400:
            raise AttestationError(f"registry token request failed with {resp.status_code}: {resp.text[:300]}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise AttestationError(f"registry token response is not JSON: {e}") from e

        token = (payload.get("token") or payload.get("access_token")) if isinstance(payload, dict) else None
        if not token:
            raise AttestationError("registry token response did not include a token")
        return token

    def get_manifest(self, reference: str) -> Tuple[Dict[str, Any], str]:
        resp = self.get(f"/manifests/{reference}", accept=MANIFEST_ACCEPT)
        try:
            manifest = resp.json()
        except ValueError as e:
            raise AttestationError(f"manifest {reference} is not JSON: {e}") from e
        if not isinstance(manifest, dict):
            raise AttestationError(f"manifest {reference} is not a JSON object")

        digest = resp.headers.get("Docker-Content-Digest")
        if not digest:
            digest = "sha256:" + hashlib.sha256(resp.content).hexdigest()
        return manifest, digest

    def get_blob(self, digest: str) -> bytes:
        return self.get(f"/blobs/{digest}").content


# ----------------------------
# Digest + attestation lookup
# ----------------------------

def _platform_matches(entry: Dict[str, Any], platform: str) -> bool:
    parts = platform.split("/")
    want_os = parts[0]
    want_arch = parts[1] if len(parts) > 1 else ""
    want_variant = parts[2] if len(parts) > 2 else ""
    if entry.get("os") != want_os or entry.get("architecture") != want_arch:
        return False
    return not want_variant or entry.get("variant") == want_variant


def resolve_image_digest(client: RegistryClient, platform: Optional[str] = None) -> str:
    """
    Digest the attestations are attached to: the platform's manifest when the
    reference is an index and the platform is listed, else the reference itself.
    """
    manifest, digest = client.get_manifest(client.image.reference)
    is_index = manifest.get("mediaType") in INDEX_TYPES or isinstance(manifest.get("manifests"), list)
    if not is_index or not platform:
        return digest

    for entry in manifest.get("manifests") or []:
        if isinstance(entry, dict) and _platform_matches(entry.get("platform") or {}, platform):
            return entry["digest"]

    logger.warning("Platform %s not found in index %s; using the index digest", platform, digest)
    return digest


def extract_spdx_from_envelope(envelope: bytes) -> Optional[bytes]:
    """
    Return the SPDX predicate from a DSSE envelope, or None for other predicate types.

    Raises:
        AttestationError: if the envelope or its in-toto statement is malformed
    """
    try:
        dsse = json.loads(envelope)
    except ValueError as e:
        raise AttestationError(f"failed to parse DSSE envelope: {e}") from e
    if not isinstance(dsse, dict) or "payload" not in dsse:
        raise AttestationError("no payload field in DSSE envelope")

    payload = dsse["payload"]
    if not isinstance(payload, str):
        raise AttestationError("payload field is not a string")
    try:
        decoded = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AttestationError(f"failed to decode base64 payload: {e}") from e

    try:
        statement = json.loads(decoded)
    except ValueError as e:
        raise AttestationError(f"failed to parse statement: {e}") from e
    if not isinstance(statement, dict):
        raise AttestationError("statement is not a JSON object")

    predicate_type = statement.get("predicateType")
    if not isinstance(predicate_type, str):
        raise AttestationError("no predicateType found")
    if Config.spdx_predicate_marker not in predicate_type:
        return None
    if "predicate" not in statement:
        raise AttestationError("no predicate found in statement")

    return json.dumps(statement["predicate"]).encode("utf-8")


def fetch_document(
    image_reference: str,
    platform: Optional[str] = None,
    *,
    session: Optional[requests.Session] = None,
) -> bytes:
    """
    Fetch the SPDX SBOM attached to an image as a cosign attestation.

    Raises:
        AttestationError: if the image, its attestations, or an SPDX attestation cannot be found
    """
    try:
        image = parse_image_reference(image_reference)
    except ValueError as e:
        raise AttestationError(f"invalid image reference: {e}") from e

    client = RegistryClient(image, session=session)
    try:
        digest = resolve_image_digest(client, platform)
    except RegistryNotFoundError as e:
        raise AttestationError(f"failed to get signed image {image_reference}: {e}") from e
    logger.info("Resolved %s to %s", image_reference, digest)

    att_tag = digest.replace(":", "-") + ".att"
    try:
        att_manifest, _ = client.get_manifest(att_tag)
    except RegistryNotFoundError:
        raise AttestationError(f"no attestations found for image {image_reference}") from None

    layers = att_manifest.get("layers") or []
    if not layers:
        raise AttestationError(f"no attestations found for image {image_reference}")

    for layer in layers:
        layer_digest = layer.get("digest") if isinstance(layer, dict) else None
        if not layer_digest:
            continue
        try:
            sbom = extract_spdx_from_envelope(client.get_blob(layer_digest))
        except AttestationError as e:
            logger.debug("Skipping attestation layer %s: %s", layer_digest, e)
            continue
        if sbom is not None:
            return sbom

    raise AttestationError(f"no SPDX attestations found for image {image_reference}")
