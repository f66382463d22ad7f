"""Materialize uploaded credentials inside a job workspace.

Each artifact is optional. What gets written also shapes the job
environment through ``Workspace.set_env``:

- cloud credentials  -> GOOGLE_APPLICATION_CREDENTIALS, CLOUDSDK_CONFIG
- SSH private key    -> GIT_SSH_COMMAND
- registry token     -> GITLAB_PERSONAL_ACCESS_TOKEN, GITLAB_PRIVATE_TOKEN,
                        MAVEN_GITLAB_TOKEN and ~/.m2/settings.xml servers
"""

from __future__ import annotations

import os
import re
import shlex
from pathlib import Path
from typing import Callable
from xml.sax.saxutils import escape

from sandbox_orchestrator.errors import CredentialError, WorkspaceError
from sandbox_orchestrator.schemas import UploadedFile
from sandbox_orchestrator.workspace.manager import Workspace


Log = Callable[[str], None]

CLOUD_CREDENTIALS_FILENAME = "application_default_credentials.json"
SSH_KEY_FILENAME = "id_ed25519"
REGISTRY_TOKEN_FILENAME = "registry-token.key"

MARKER_START = "<!-- sandbox registry token start -->"
MARKER_END = "<!-- sandbox registry token end -->"
_MARKER_RE = re.compile(r"[ \t]*" + re.escape(MARKER_START) + r".*?" + re.escape(MARKER_END) + r"\n?", re.DOTALL)
_PRIVATE_KEY_RE = re.compile(r"-----BEGIN [A-Z0-9 ]*PRIVATE KEY-----", re.IGNORECASE)
_REPOSITORY_BLOCK_RE = re.compile(r"<(repository|pluginRepository)\b.*?</\1>", re.DOTALL | re.IGNORECASE)
_ID_RE = re.compile(r"<id>(.*?)</id>", re.DOTALL | re.IGNORECASE)
_POM_SKIP_DIRS = {".git", "node_modules", "dist", "build", "target", ".idea", ".vscode"}

SETTINGS_TEMPLATE = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<settings xmlns="http://maven.apache.org/SETTINGS/1.0.0" '
    'xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
    'xsi:schemaLocation="http://maven.apache.org/SETTINGS/1.0.0 '
    'https://maven.apache.org/xsd/settings-1.0.0.xsd">\n'
    "  <servers>\n{snippet}\n  </servers>\n"
    "</settings>\n"
)


def _decode(upload: UploadedFile, label: str) -> bytes:
    try:
        return upload.decode(label)
    except ValueError as e:
        raise CredentialError(str(e)) from e


def _write_secret(path: Path, data: bytes) -> None:
    path.write_bytes(data)
    os.chmod(path, 0o600)


def sanitize_filename(name: str | None, fallback: str) -> str:
    """Basename of ``name``; ``fallback`` when it is empty, ``.`` or ``..``."""
    if not name:
        return fallback
    normalized = os.path.basename(name.strip().replace("\\", "/"))
    if not normalized or normalized in {".", ".."}:
        return fallback
    return normalized


# =============================================================================
# Cloud credentials
# =============================================================================

def materialize_cloud_credentials(workspace: Workspace, upload: UploadedFile | None, log: Log) -> Path | None:
    if upload is None:
        log("No cloud credentials file received")
        return None

    data = _decode(upload, "cloud credentials file")
    filename = sanitize_filename(upload.filename, CLOUD_CREDENTIALS_FILENAME)
    try:
        workspace.gcloud_dir.mkdir(parents=True, exist_ok=True)
        destination = workspace.gcloud_dir / filename
        _write_secret(destination, data)
    except OSError as e:
        raise WorkspaceError(f"Could not save cloud credentials: {e}") from e

    workspace.set_env("GOOGLE_APPLICATION_CREDENTIALS", str(destination))
    workspace.set_env("CLOUDSDK_CONFIG", str(destination.parent))
    log(f"Cloud credentials ({upload.filename or 'unnamed'}) saved to {destination}")
    return destination


# =============================================================================
# SSH key
# =============================================================================

def ssh_config_block(key_path: Path) -> str:
    return (
        "# sandbox ssh key\n"
        "Host *\n"
        f"  IdentityFile {key_path}\n"
        "  IdentitiesOnly yes\n"
        "  StrictHostKeyChecking no\n"
    )


def materialize_ssh_key(workspace: Workspace, upload: UploadedFile | None, log: Log) -> Path | None:
    if upload is None:
        log("No SSH key received")
        return None

    original = (upload.filename or "").strip()
    if original and os.path.basename(original) != SSH_KEY_FILENAME:
        log(f"SSH key {os.path.basename(original)} will be renamed to {SSH_KEY_FILENAME}")
    data = _decode(upload, "SSH private key")

    ssh_dir = workspace.ssh_dir
    destination = ssh_dir / SSH_KEY_FILENAME
    try:
        ssh_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(ssh_dir, 0o700)
        _write_secret(destination, data)
    except OSError as e:
        raise WorkspaceError(f"Could not prepare {ssh_dir}: {e}") from e

    config_path = ssh_dir / "config"
    try:
        existing = config_path.read_text(encoding="utf-8").rstrip() if config_path.exists() else ""
        block = ssh_config_block(destination)
        config_path.write_text(f"{existing}\n\n{block}" if existing else block, encoding="utf-8")
        os.chmod(config_path, 0o600)
    except OSError as e:
        log(f"Could not update {config_path}: {e}")

    workspace.set_env(
        "GIT_SSH_COMMAND",
        f"ssh -i {shlex.quote(str(destination))} -o IdentitiesOnly=yes -o StrictHostKeyChecking=no",
    )
    log(f"SSH key ({upload.filename or 'unnamed'}) saved to {destination.relative_to(workspace.root)}")
    return destination


# =============================================================================
# Package registry token
# =============================================================================

def extract_registry_token(content: str) -> str | None:
    """First usable token in an uploaded token file.

    Accepts a bare token or a ``key=value`` line. PEM private keys are
    refused because they are a common wrong upload.
    """
    if not content or not content.strip():
        return None
    if _PRIVATE_KEY_RE.search(content):
        raise CredentialError(
            "The registry token file looks like a private key; "
            "upload a file containing only the personal access token (glpat-...)"
        )
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if "=" in line:
            value = line.split("=", 1)[1].strip()
            if value:
                return value
            continue
        return line
    return None


def build_servers_snippet(server_ids: list[str], token: str) -> str:
    servers = []
    for server_id in server_ids:
        servers.append(
            "    <server>\n"
            f"      <id>{_xml(server_id)}</id>\n"
            "      <username>oauth2</username>\n"
            f"      <password>{_xml(token)}</password>\n"
            "      <configuration>\n"
            "        <httpHeaders>\n"
            "          <property>\n"
            "            <name>Private-Token</name>\n"
            f"            <value>{_xml(token)}</value>\n"
            "          </property>\n"
            "        </httpHeaders>\n"
            "      </configuration>\n"
            "    </server>"
        )
    return f"    {MARKER_START}\n" + "\n".join(servers) + f"\n    {MARKER_END}"


def _xml(value: str) -> str:
    return escape(value, {'"': "&quot;", "'": "&apos;"})


def merge_maven_settings(existing: str, snippet: str) -> str:
    """Place the marker block into ``existing`` settings, replacing an earlier one."""
    if not existing or not existing.strip():
        return SETTINGS_TEMPLATE.format(snippet=snippet)

    cleaned = _MARKER_RE.sub("", existing)
    if re.search(r"</servers>", cleaned, re.IGNORECASE):
        return re.sub(
            r"[ \t]*</servers>", lambda _: f"{snippet}\n  </servers>", cleaned, count=1, flags=re.IGNORECASE
        )
    if re.search(r"</settings>", cleaned, re.IGNORECASE):
        return re.sub(
            r"</settings>",
            lambda _: f"  <servers>\n{snippet}\n  </servers>\n</settings>",
            cleaned,
            count=1,
            flags=re.IGNORECASE,
        )
    return SETTINGS_TEMPLATE.format(snippet=snippet)


def find_pom_files(root: Path) -> list[Path]:
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in _POM_SKIP_DIRS)
        if "pom.xml" in filenames:
            found.append(Path(dirpath) / "pom.xml")
    return found


def collect_registry_server_ids(repo_dir: Path, url_pattern: str) -> list[str]:
    """Ids of pom.xml repositories whose URL matches the registry pattern."""
    pattern = re.compile(url_pattern, re.IGNORECASE)
    ids: list[str] = []
    for pom in find_pom_files(repo_dir):
        try:
            content = pom.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            continue
        if not pattern.search(content):
            continue
        for match in _REPOSITORY_BLOCK_RE.finditer(content):
            block = match.group(0)
            if not pattern.search(block):
                continue
            id_match = _ID_RE.search(block)
            if id_match and id_match.group(1).strip() not in ids:
                ids.append(id_match.group(1).strip())
    return ids


def materialize_registry_token(
    workspace: Workspace,
    upload: UploadedFile | None,
    url_pattern: str,
    default_server_id: str,
    log: Log,
) -> str | None:
    """Write the registry token and merge Maven server entries for it.

    Runs after the repository is in place, since server ids come from its
    pom.xml files.
    """
    if upload is None:
        log("No registry token received")
        return None

    data = _decode(upload, "registry token file")
    token = extract_registry_token(data.decode("utf-8", errors="replace"))
    if not token:
        log("Registry token file is empty; no credential applied")
        return None

    filename = sanitize_filename(upload.filename, REGISTRY_TOKEN_FILENAME)
    try:
        workspace.secrets_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(workspace.secrets_dir, 0o700)
        destination = workspace.secrets_dir / filename
        _write_secret(destination, f"{token}\n".encode("utf-8"))
    except OSError as e:
        raise WorkspaceError(f"Could not save the registry token: {e}") from e

    for name in ("GITLAB_PERSONAL_ACCESS_TOKEN", "GITLAB_PRIVATE_TOKEN", "MAVEN_GITLAB_TOKEN"):
        workspace.set_env(name, token)
    log(f"Registry token ({upload.filename or 'unnamed'}) saved to {destination.relative_to(workspace.root)}")

    server_ids = collect_registry_server_ids(workspace.repo_dir, url_pattern) or [default_server_id]
    settings_path = workspace.maven_settings
    try:
        settings_path.parent.mkdir(parents=True, exist_ok=True)
        existing = settings_path.read_text(encoding="utf-8") if settings_path.exists() else ""
        content = merge_maven_settings(existing, build_servers_snippet(server_ids, token))
        _write_secret(settings_path, content.encode("utf-8"))
    except OSError as e:
        raise WorkspaceError(f"Could not update {settings_path}: {e}") from e

    relative = settings_path.relative_to(workspace.root)
    log(f"Updated {relative} for {', '.join(server_ids)}")
    log(f"Current {relative} (redacted):\n{redact_secret(content, token)}")
    return token


def redact_secret(content: str, secret: str) -> str:
    if not secret:
        return content
    return content.replace(secret, "****").replace(_xml(secret), "****")
