"""CLI entry point for aumai-pgpverify."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from aumai_pgpverify.cache import DiskKeyStore, KeyCache
from aumai_pgpverify.config import VerifierSettings, load_settings
from aumai_pgpverify.core import SignatureVerifier
from aumai_pgpverify.errors import ConfigurationError, PgpVerifyError
from aumai_pgpverify.keyserver import KeyServerClientGroup
from aumai_pgpverify.keysmap import TrustPolicy
from aumai_pgpverify.models import (
    ArtifactCoordinate,
    ArtifactEntry,
    Strategy,
    VerificationResult,
)
from aumai_pgpverify.orchestrator import VerificationOrchestrator

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _configure_logging(verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _parse_artifact(text: str) -> ArtifactEntry:
    coordinate, sep, path = text.partition("=")
    if not sep or not path.strip():
        raise ConfigurationError(f"Invalid artifact: expected COORD=PATH, got '{text}'")
    try:
        parsed = ArtifactCoordinate.parse(coordinate)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid artifact '{text}': {exc}") from exc
    return ArtifactEntry(coordinate=parsed, artifact_path=Path(path.strip()))


def _build_settings(config: str | None, **overrides: Any) -> VerifierSettings:
    settings = load_settings(Path(config)) if config else VerifierSettings()
    updates = {key: value for key, value in overrides.items() if value not in (None, ())}
    if not updates:
        return settings
    try:
        return VerifierSettings.model_validate({**settings.model_dump(), **updates})
    except ValueError as exc:
        raise ConfigurationError(f"Invalid option value: {exc}") from exc


def _build_orchestrator(
    settings: VerifierSettings, key_servers: KeyServerClientGroup
) -> VerificationOrchestrator:
    policy = TrustPolicy.build(settings.keys_map)
    verifier = SignatureVerifier(
        policy,
        fail_no_signature=settings.fail_no_signature,
        fail_weak_signature=settings.fail_weak_signature,
    )
    store = DiskKeyStore(settings.cache_dir) if settings.cache_dir else None
    cache = KeyCache(key_servers.fetch_key, store)
    return VerificationOrchestrator(verifier, key_servers, cache, settings.workers)


def _settings_options(func: Callable[..., Any]) -> Callable[..., Any]:
    options = [
        click.option(
            "--config", default=None, metavar="FILE", help="YAML settings file."
        ),
        click.option(
            "--keys-map",
            "keys_map",
            multiple=True,
            metavar="FILE",
            help="Keys map file; repeat to append more sources.",
        ),
        click.option(
            "--keyserver",
            "key_servers",
            multiple=True,
            metavar="URL",
            help="Key server URL (hkp, hkps, http, https); repeatable, in order.",
        ),
        click.option(
            "--load-balance/--fallback",
            "load_balance",
            default=None,
            help="Key server strategy.",
        ),
        click.option("--timeout", type=float, default=None, help="Per-request timeout in seconds."),
        click.option(
            "--fail-no-signature/--allow-no-signature",
            "fail_no_signature",
            default=None,
            help="Fail artifacts that are unsigned and not listed in the keys map.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _strategy(load_balance: bool | None) -> Strategy | None:
    if load_balance is None:
        return None
    return Strategy.load_balance if load_balance else Strategy.fallback


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.group()
@click.version_option()
@click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
@click.option("-q", "--quiet", is_flag=True, help="Only log warnings and errors.")
def main(verbose: bool, quiet: bool) -> None:
    """AumAI PGPVerify: OpenPGP signature checks for build artifacts."""
    _configure_logging(verbose, quiet)


@main.command("check")
@_settings_options
@click.option("--workers", type=int, default=None, help="Parallel verifications.")
@click.option("--report", default=None, metavar="FILE", help="Write a JSON report.")
@click.argument("artifacts", nargs=-1, metavar="COORD=PATH...")
def check_command(
    config: str | None,
    keys_map: tuple[str, ...],
    key_servers: tuple[str, ...],
    load_balance: bool | None,
    timeout: float | None,
    fail_no_signature: bool | None,
    workers: int | None,
    report: str | None,
    artifacts: tuple[str, ...],
) -> None:
    """Verify the PGP signatures of artifacts against the keys map.

    Each artifact is given as groupId:artifactId[:type]:version=PATH; its
    signature is read from PATH.asc.
    """
    try:
        if not artifacts:
            raise ConfigurationError("At least one COORD=PATH artifact is required")
        entries = [_parse_artifact(text) for text in artifacts]
        settings = _build_settings(
            config,
            keys_map=list(keys_map) or None,
            key_servers=list(key_servers) or None,
            strategy=_strategy(load_balance),
            timeout=timeout,
            fail_no_signature=fail_no_signature,
            workers=workers,
            report_file=report,
        )
        with KeyServerClientGroup.from_settings(settings) as key_servers_group:
            orchestrator = _build_orchestrator(settings, key_servers_group)
            run_report = orchestrator.run(entries)
    except PgpVerifyError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    for result in run_report.results:
        status = "OK" if result.accepted else "FAIL"
        click.echo(f"[{status}] {result.coordinate} {result.outcome.value}")
        if not result.accepted:
            click.echo(f"       {result.detail}")

    if settings.report_file is not None:
        run_report.write_json(settings.report_file)
        click.echo(f"Report written to: {settings.report_file}")

    if not run_report.success:
        click.echo(
            f"PGP signature verification failed for {len(run_report.failed())} artifact(s).",
            err=True,
        )
        sys.exit(2)
    click.echo(f"All {len(run_report.results)} artifact(s) verified.")


@main.command("show")
@_settings_options
@click.argument("artifact", metavar="COORD=PATH")
def show_command(
    config: str | None,
    keys_map: tuple[str, ...],
    key_servers: tuple[str, ...],
    load_balance: bool | None,
    timeout: float | None,
    fail_no_signature: bool | None,
    artifact: str,
) -> None:
    """Show the PGP signature and key details of one artifact."""
    try:
        entry = _parse_artifact(artifact)
        settings = _build_settings(
            config,
            keys_map=list(keys_map) or None,
            key_servers=list(key_servers) or None,
            strategy=_strategy(load_balance),
            timeout=timeout,
            fail_no_signature=fail_no_signature,
        )
        with KeyServerClientGroup.from_settings(settings) as key_servers_group:
            orchestrator = _build_orchestrator(settings, key_servers_group)
            result = orchestrator.verify_entry(entry)
    except PgpVerifyError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    click.echo("\n".join(render_show(entry, result)))
    if not result.accepted:
        sys.exit(2)


def render_show(entry: ArtifactEntry, result: VerificationResult) -> list[str]:
    """Lines printed by ``show`` for one artifact."""
    coordinate = entry.coordinate
    lines = [
        "Artifact:",
        f"\tgroupId:     {coordinate.group_id}",
        f"\tartifactId:  {coordinate.artifact_id}",
        f"\ttype:        {coordinate.type}",
        f"\tversion:     {coordinate.version}",
        f"\tfile:        {entry.artifact_path}",
        f"\tsignature:   {entry.effective_signature_path}",
    ]

    signature = result.signature
    if signature is not None:
        lines += [
            "",
            "PGP signature:",
            f"\talgorithm:   {signature.key_algorithm} with {signature.hash_algorithm}",
            f"\tkeyId:       {signature.key_id}",
        ]
        if signature.issuer_fingerprint:
            lines.append(f"\tfingerprint: {signature.issuer_fingerprint}")
        if signature.created is not None:
            lines.append(f"\tcreate date: {signature.created.isoformat()}")
    lines.append(f"\tstatus:      {result.outcome.value}")

    key = result.key
    if key is not None or result.revocation is not None or result.key_show_url:
        lines += ["", "PGP key:"]
    if key is not None:
        if key.algorithm:
            bits = f" ({key.bits} bits)" if key.bits else ""
            lines.append(f"\talgorithm:   {key.algorithm}{bits}")
        lines.append(f"\tfingerprint: {key.fingerprint}")
        if key.master_fingerprint:
            lines.append(f"\tmaster key:  {key.master_fingerprint}")
        if key.created is not None:
            lines.append(f"\tcreate date: {key.created.isoformat()}")
        for user_id in key.user_ids:
            lines.append(f"\tuid:         {user_id}")
    if result.revocation is not None:
        revocation = result.revocation
        lines.append("\tkey is revoked")
        if revocation.date is not None:
            lines.append(f"\tdate:        {revocation.date.isoformat()}")
        lines.append(f"\treason:      {revocation.reason}")
        if revocation.description:
            lines.append(f"\tdescription: {revocation.description}")
    if result.key_show_url:
        lines.append(f"\tkey server:  {result.key_show_url}")

    lines += ["", f"Result: {result.detail}"]
    return lines


if __name__ == "__main__":
    main()
