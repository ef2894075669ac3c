"""Actionable error catalog for guacsetup."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "not_root": {
        "what": "{command} must run as root.",
        "next": "Re-run it with `sudo {command}`.",
    },
    "insecure_http": {
        "what": "{label} uses insecure HTTP.",
        "next": "Switch to an HTTPS mirror or set `allow_insecure_http: true` only for trusted mirrors.",
    },
    "index_unreachable": {
        "what": "Release index {url} is not reachable: {reason}",
        "next": "Check network access to the mirror, then re-run; completed steps are skipped safely.",
    },
    "no_release_found": {
        "what": "No stable release found in {url}.",
        "next": "Verify the index URL in the configuration points to a directory listing of releases.",
    },
    "plugin_entry_missing": {
        "what": "Expected entry `{entry}` not found in {archive}.",
        "next": "The upstream archive layout changed; download it manually and inspect its contents.",
    },
    "service_failed": {
        "what": "Service {service} failed to {action}.",
        "next": "Inspect `journalctl -u {service}` and re-run once the cause is fixed.",
    },
    "credential_lost": {
        "what": "Database role {user} exists but no known secret matches it; the password was rotated.",
        "next": "Restart any service still using the old password; the new one is in {path}.",
    },
    "no_pending_schema_upgrade": {
        "what": "No schema upgrade is waiting for approval.",
        "next": "Run `guacamole-update` first; it stages upgrade scripts when a release needs them.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
