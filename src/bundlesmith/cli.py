"""bundlesmith CLI entry point."""

from pathlib import Path
from typing import Annotated

import typer

from bundlesmith import __version__, cli_logger, exit_codes
from bundlesmith.bundle import dump_bundle
from bundlesmith.config import load_settings
from bundlesmith.credentials import (
    BasicAuth,
    Credential,
    InsecureIgnoreHostKey,
    SSHKey,
    StrictHostKeyPolicy,
)
from bundlesmith.errors import handle_cli_error
from bundlesmith.git import is_git_available
from bundlesmith.resolver import ResolutionFailed, ResolutionSucceeded, resolve
from bundlesmith.sanitize import sanitize_bundle_name
from bundlesmith.source import SourceKind, describe_source

app = typer.Typer(
    name="bundlesmith",
    help="Resolve git, package-repository and local sources into deployment bundles.",
    no_args_is_help=True,
)


def require_git() -> None:
    """Verify git is available on the system.

    Raises:
        typer.Exit: With GIT_ERROR if git is not available.
    """
    if not is_git_available():
        cli_logger.error("Git is not available")
        cli_logger.dim("  • git sources are cloned with the git binary")
        raise typer.Exit(exit_codes.GIT_ERROR)


def build_credential(
    username: str | None,
    password: str | None,
    ssh_key: Path | None,
    known_hosts: Path | None,
    insecure_skip_host_key: bool,
) -> Credential | None:
    """Assemble the credential from CLI options.

    Raises:
        typer.Exit: With INVALID_ARGS on contradictory or incomplete options.
    """
    if ssh_key is not None and (username or password):
        cli_logger.error("Cannot combine --ssh-key with --username/--password")
        raise typer.Exit(exit_codes.INVALID_ARGS)

    if ssh_key is not None:
        if known_hosts is not None and insecure_skip_host_key:
            cli_logger.error("Cannot combine --known-hosts with --insecure-skip-host-key")
            raise typer.Exit(exit_codes.INVALID_ARGS)
        if known_hosts is None and not insecure_skip_host_key:
            cli_logger.error("--ssh-key requires --known-hosts or --insecure-skip-host-key")
            raise typer.Exit(exit_codes.INVALID_ARGS)

        policy = (
            InsecureIgnoreHostKey()
            if insecure_skip_host_key
            else StrictHostKeyPolicy(known_hosts=known_hosts.read_text())  # type: ignore[union-attr]
        )
        return SSHKey(private_key=ssh_key.read_text(), host_key_policy=policy)

    if username or password:
        if not (username and password):
            cli_logger.error("--username and --password must be given together")
            raise typer.Exit(exit_codes.INVALID_ARGS)
        return BasicAuth(username=username, password=password)

    return None


def build_helm_credential(username: str | None, password: str | None) -> BasicAuth | None:
    """Assemble the chart repository credential from CLI options.

    Raises:
        typer.Exit: With INVALID_ARGS if only one half is given.
    """
    if not (username or password):
        return None
    if not (username and password):
        cli_logger.error("--helm-username and --helm-password must be given together")
        raise typer.Exit(exit_codes.INVALID_ARGS)
    return BasicAuth(username=username, password=password)


@app.command(name="resolve")
def resolve_cmd(
    location: Annotated[str, typer.Argument(help="Git URL, package repository URL or local path")],
    kind: Annotated[
        SourceKind | None,
        typer.Option("--kind", "-k", help="Source kind (inferred from LOCATION when omitted)"),
    ] = None,
    sub_path: Annotated[str | None, typer.Option("--sub-path", help="Subtree to collect")] = None,
    revision: Annotated[
        str | None,
        typer.Option("--revision", "-r", help="Git commit/tag, or chart version for package repositories"),
    ] = None,
    branch: Annotated[str | None, typer.Option("--branch", "-b", help="Git branch to clone")] = None,
    chart: Annotated[str | None, typer.Option("--chart", help="Chart name (package repositories)")] = None,
    name: Annotated[str | None, typer.Option("--name", "-n", help="Bundle name")] = None,
    username: Annotated[
        str | None, typer.Option("--username", "-u", envvar="BUNDLESMITH_USERNAME", help="Basic auth user")
    ] = None,
    password: Annotated[
        str | None,
        typer.Option("--password", envvar="BUNDLESMITH_PASSWORD", help="Basic auth password", show_default=False),
    ] = None,
    helm_username: Annotated[
        str | None,
        typer.Option(
            "--helm-username",
            envvar="BUNDLESMITH_HELM_USERNAME",
            help="Basic auth user for the chart repository of a release definition",
        ),
    ] = None,
    helm_password: Annotated[
        str | None,
        typer.Option(
            "--helm-password",
            envvar="BUNDLESMITH_HELM_PASSWORD",
            help="Basic auth password for the chart repository of a release definition",
            show_default=False,
        ),
    ] = None,
    ssh_key: Annotated[
        Path | None, typer.Option("--ssh-key", exists=True, dir_okay=False, help="SSH private key file")
    ] = None,
    known_hosts: Annotated[
        Path | None, typer.Option("--known-hosts", exists=True, dir_okay=False, help="known_hosts file")
    ] = None,
    insecure_skip_host_key: Annotated[
        bool, typer.Option("--insecure-skip-host-key", help="Do not verify SSH host keys")
    ] = False,
    credential_scope: Annotated[
        str | None,
        typer.Option("--credential-scope", help="Regex; credentials are only sent to matching locations"),
    ] = None,
    timeout: Annotated[float | None, typer.Option("--timeout", help="Network timeout in seconds")] = None,
    env_file: Annotated[
        Path | None, typer.Option("--env-file", dir_okay=False, help="Read BUNDLESMITH_* settings from a .env file")
    ] = None,
    output: Annotated[
        Path | None, typer.Option("--output", "-o", dir_okay=False, help="Write the bundle here instead of stdout")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")] = False,
) -> None:
    """Resolve a source into a bundle and print it as YAML."""
    cli_logger.configure_logging(verbose)

    try:
        settings = load_settings(env_file, credential_scope=credential_scope, timeout=timeout)
        credential = build_credential(username, password, ssh_key, known_hosts, insecure_skip_host_key)
        helm_credential = build_helm_credential(helm_username, helm_password)
        bundle_name = sanitize_bundle_name(name) if name else None
        descriptor = describe_source(
            location,
            kind,
            sub_path=sub_path,
            revision=revision,
            branch=branch,
            chart=chart,
            credential=credential,
            helm_credential=helm_credential,
        )
    except typer.Exit:
        raise
    except ValueError as e:
        cli_logger.error(str(e))
        raise typer.Exit(exit_codes.INVALID_ARGS) from e
    except Exception as e:
        raise typer.Exit(handle_cli_error(e)) from e

    if descriptor.kind == SourceKind.GIT:
        require_git()

    match resolve(descriptor, settings, name=bundle_name):
        case ResolutionSucceeded(bundle=bundle):
            rendered = dump_bundle(bundle)
            if output is not None:
                output.write_text(rendered)
                cli_logger.success(
                    f"Wrote bundle '{bundle.name}' with {len(bundle.resources)} resources to {output}"
                )
            else:
                typer.echo(rendered, nl=False)
            raise typer.Exit(exit_codes.SUCCESS)

        case ResolutionFailed(state=state, error=error):
            cli_logger.dim(f"resolution failed while {state.value}")
            raise typer.Exit(handle_cli_error(error))


@app.command()
def version() -> None:
    """Show the bundlesmith version."""
    typer.echo(f"bundlesmith {__version__}")


if __name__ == "__main__":
    app()
