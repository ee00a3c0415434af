"""
Wrapper around the kubeseal CLI.

Values are sealed in raw mode with strict scope, so the ciphertext can only be
decrypted as the given key of the named secret in the given namespace, by the
controller holding the private half of the certificate.
"""

import asyncio
import logging
import os
import tempfile

from edge_deploy.core.config import settings

logger = logging.getLogger(__name__)


class KubesealError(RuntimeError):
    """kubeseal failed to encrypt a value."""


class KubesealConnector:
    def __init__(self, binary: str | None = None):
        self.binary = binary or settings.KUBESEAL_BINARY

    async def _run_command(self, cmd: list[str]) -> tuple[str, str, int]:
        logger.debug(f"Running command: {' '.join(cmd)}")
        process = await asyncio.create_subprocess_exec(
            *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
        stdout, stderr = await process.communicate()
        return stdout.decode("utf-8").strip(), stderr.decode("utf-8").strip(), process.returncode or 0

    async def seal_raw(self, cert: str, namespace: str, name: str, value: bytes) -> str:
        """
        Encrypt one secret value.

        Args:
            cert: PEM certificate of the target cluster's sealing controller
            namespace: Namespace of the secret the value belongs to
            name: Name of the secret the value belongs to
            value: Plaintext value

        Returns:
            The base64 ciphertext for use in a SealedSecret's encryptedData

        Raises:
            KubesealError: If kubeseal exits non-zero
        """
        with tempfile.TemporaryDirectory(prefix="kubeseal-", dir=settings.TEMP_DIR) as tmp:
            cert_path = os.path.join(tmp, "cert.pem")
            value_path = os.path.join(tmp, "value")
            with open(cert_path, "w", encoding="utf-8") as f:
                f.write(cert)
            with open(value_path, "wb") as f:
                f.write(value)

            cmd = [
                self.binary,
                "--raw",
                "--scope",
                "strict",
                "--cert",
                cert_path,
                "--namespace",
                namespace,
                "--name",
                name,
                "--from-file",
                value_path,
            ]
            stdout, stderr, code = await self._run_command(cmd)

        if code != 0:
            error_msg = f"kubeseal failed for {namespace}/{name}: {stderr}"
            logger.error(error_msg)
            raise KubesealError(error_msg)

        logger.debug(f"Sealed value for {namespace}/{name}")
        return stdout
