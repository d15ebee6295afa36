# signserver/services/signers.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol
import logging
import shlex
import subprocess

from signserver.core.errors import ConfigError, SigningError
from signserver.core.models import SignMetadata

logger = logging.getLogger("signserver.signer")

MASK = "***"


@dataclass(frozen=True)
class SignParameters:
    """Server-side signing settings, fixed for the process lifetime."""
    cert_file: str
    store_pass: str = ""
    store_type: str = "PIV"
    keystore: Optional[str] = None
    alias: Optional[str] = None
    digest: str = "sha384"
    tsa_url: str = "http://timestamp.sectigo.com"


@dataclass(frozen=True)
class SignRequest:
    input_path: Path
    output_path: Path
    metadata: SignMetadata


@dataclass(frozen=True)
class SignedArtifact:
    path: Path
    output: str = ""


# ---------- Interface ----------
class Signer(Protocol):
    name: str

    def sign(self, request: SignRequest) -> SignedArtifact: ...


def _masked(cmd: List[str], secret: str) -> str:
    if not secret:
        return shlex.join(cmd)
    return shlex.join(MASK if part == secret else part for part in cmd)


class _ToolSigner:
    name = "tool"
    default_tool = ""

    def __init__(self, params: SignParameters, tool: Optional[str] = None):
        self.params = params
        self.tool = tool or self.default_tool

    def build_command(self, request: SignRequest) -> List[str]:
        raise NotImplementedError

    def artifact_path(self, request: SignRequest) -> Path:
        raise NotImplementedError

    def sign(self, request: SignRequest) -> SignedArtifact:
        cmd = self.build_command(request)
        logger.info("running %s", _masked(cmd, self.params.store_pass))
        try:
            proc = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                check=False,
            )
        except OSError as e:
            raise SigningError(f"cannot run {self.tool}: {e}") from e

        output = proc.stdout.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise SigningError(f"exit status {proc.returncode}", output=output, returncode=proc.returncode)

        artifact = self.artifact_path(request)
        if not artifact.is_file():
            raise SigningError(f"{self.tool} produced no output file", output=output, returncode=0)
        return SignedArtifact(path=artifact, output=output)


# ---------- jsign: signs the input file in place ----------
class JsignSigner(_ToolSigner):
    name = "jsign"
    default_tool = "jsign"

    def build_command(self, request: SignRequest) -> List[str]:
        p = self.params
        cmd = [self.tool, "--storetype", p.store_type, "--storepass", p.store_pass]
        if p.keystore:
            cmd += ["--keystore", p.keystore]
        if p.alias:
            cmd += ["--alias", p.alias]
        cmd += ["--certfile", p.cert_file, "-d", p.digest, "--tsaurl", p.tsa_url]
        if request.metadata.app_name:
            cmd += ["--name", request.metadata.app_name]
        if request.metadata.app_url:
            cmd += ["--url", request.metadata.app_url]
        cmd.append(str(request.input_path))
        return cmd

    def artifact_path(self, request: SignRequest) -> Path:
        return request.input_path


# ---------- osslsigncode: writes a separate output file ----------
class OsslSigncodeSigner(_ToolSigner):
    name = "osslsigncode"
    default_tool = "osslsigncode"

    def build_command(self, request: SignRequest) -> List[str]:
        p = self.params
        cmd = [self.tool, "sign"]
        if p.keystore:
            cmd += ["-pkcs11module", p.keystore]
        if p.alias:
            cmd += ["-key", p.alias]
        cmd += ["-certs", p.cert_file, "-pass", p.store_pass, "-h", p.digest, "-ts", p.tsa_url]
        if request.metadata.app_name:
            cmd += ["-n", request.metadata.app_name]
        if request.metadata.app_url:
            cmd += ["-i", request.metadata.app_url]
        cmd += ["-in", str(request.input_path), "-out", str(request.output_path)]
        return cmd

    def artifact_path(self, request: SignRequest) -> Path:
        return request.output_path


SIGNERS = {
    JsignSigner.name: JsignSigner,
    OsslSigncodeSigner.name: OsslSigncodeSigner,
}


# ---------- Factory ----------
def get_signer(settings) -> Signer:
    cls = SIGNERS.get(settings.SIGNER)
    if cls is None:
        raise ConfigError(f"unknown SIGNER {settings.SIGNER!r}; expected one of {sorted(SIGNERS)}")
    params = SignParameters(
        cert_file=settings.CERT_FILE,
        store_pass=settings.TOKEN_PIN,
        store_type=settings.STORE_TYPE,
        keystore=settings.KEYSTORE,
        alias=settings.KEY_ALIAS,
        digest=settings.DIGEST,
        tsa_url=settings.TSA_URL,
    )
    return cls(params, tool=settings.SIGNER_PATH)
