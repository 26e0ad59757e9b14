"""Custom resource bundles backing the environment stack.

The environment template references three Lambda-backed custom resources. Their
code lives under ``assets/custom_resources`` and has to be in the artifact
bucket before the stack is deployed. Each bundle is zipped reproducibly so an
unchanged bundle always maps to the same object key.
"""

import hashlib
import io
import logging
import zipfile
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping

from deployer.errors import ArtifactUploadError, CustomResourceReadError

logger = logging.getLogger(__name__)

ASSETS_DIR = Path(__file__).resolve().parent.parent / "assets" / "custom_resources"
ARTIFACT_KEY_PREFIX = "manual/scripts/custom-resources"
SHARED_MODULES = ("cfn_response.py", "dns_records.py")
HANDLER_MODULE = "handler.py"

# Function name in the environment template -> bundle directory.
ENV_CUSTOM_RESOURCES = {
    "CertificateValidationFunction": "dns_cert_validator",
    "CustomDomainFunction": "custom_domain",
    "DNSDelegationFunction": "dns_delegation",
}

# Fixed timestamp so archives only change when their content does.
_ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)

Upload = Callable[[str, str, bytes], str]


@dataclass(frozen=True)
class CustomResource:
    """A zipped Lambda bundle identified by its function name in the template."""
    function_name: str
    zip_bytes: bytes

    def artifact_key(self) -> str:
        digest = hashlib.sha256(self.zip_bytes).hexdigest()
        return f"{ARTIFACT_KEY_PREFIX}/{self.function_name.lower()}/{digest}.zip"


def env_custom_resources(assets_dir: Path = ASSETS_DIR) -> List[CustomResource]:
    """Read and zip every custom resource the environment template needs.

    Raises:
        CustomResourceReadError: If a bundle's source files cannot be read.
    """
    try:
        shared = {name: (assets_dir / name).read_bytes() for name in SHARED_MODULES}
        resources = []
        for function_name, bundle in ENV_CUSTOM_RESOURCES.items():
            files = dict(shared)
            files[HANDLER_MODULE] = (assets_dir / bundle / HANDLER_MODULE).read_bytes()
            resources.append(CustomResource(function_name=function_name, zip_bytes=_zip(files)))
    except OSError as e:
        raise CustomResourceReadError(e) from e
    return resources


def _zip(files: Mapping[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name in sorted(files):
            info = zipfile.ZipInfo(name, date_time=_ZIP_DATE_TIME)
            info.external_attr = 0o644 << 16
            info.compress_type = zipfile.ZIP_DEFLATED
            archive.writestr(info, files[name])
    return buf.getvalue()


class ArtifactStager:
    """Uploads the environment's custom resource bundles to an artifact bucket.

    Uploads are independent, so they run on a small thread pool. The first
    failure cancels uploads that have not started yet; objects already written
    stay in the bucket and are overwritten by the next (idempotent) run.

    Args:
        upload: Callable taking (bucket, key, body) and returning the object URL.
        assets_dir: Directory holding the bundle sources.
        max_workers: Upper bound on concurrent uploads.
    """

    def __init__(self, upload: Upload, assets_dir: Path = ASSETS_DIR, max_workers: int = 4) -> None:
        self._upload = upload
        self._assets_dir = assets_dir
        self._max_workers = max_workers

    def stage(self, bucket: str) -> Dict[str, str]:
        resources = env_custom_resources(self._assets_dir)
        workers = max(1, min(self._max_workers, len(resources)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(self._upload, bucket, cr.artifact_key(), cr.zip_bytes)
                for cr in resources
            ]
            wait(futures, return_when=FIRST_EXCEPTION)
            for future in futures:
                future.cancel()
            for future in futures:
                if future.done() and not future.cancelled() and future.exception() is not None:
                    raise ArtifactUploadError(bucket, future.exception()) from future.exception()

        urls = {}
        for cr, future in zip(resources, futures):
            urls[cr.function_name] = future.result()
            logger.info("Staged %s at %s", cr.function_name, urls[cr.function_name])
        return urls
