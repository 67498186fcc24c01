import click

# Client timeouts default to the STOK_* settings; see stok.settings.
_TIMEOUT = click.FloatRange(min=0, min_open=True)


def _parse_mapping(_ctx: click.Context, param: click.Parameter, values: tuple[str, ...]) -> dict[str, str]:
    """``KEY=VALUE`` options (repeatable, or comma-separated) into a dict."""
    result: dict[str, str] = {}
    for value in values:
        for item in filter(None, value.split(",")):
            key, sep, val = item.partition("=")
            if not sep or not key:
                msg = f"expected KEY=VALUE, got {item!r}"
                raise click.BadParameter(msg, param=param)
            result[key] = val
    return result


def _split_list(_ctx: click.Context, _param: click.Parameter, values: tuple[str, ...]) -> list[str]:
    return [item for value in values for item in value.split(",") if item]


def _run_client(kube_context: str | None, operation) -> None:
    """Connect to the cluster, run ``operation(cluster)`` and map client errors to exit codes."""
    import asyncio
    import sys

    from stok.client.errors import ContainerExitError, StokError
    from stok.cluster import ClusterError
    from stok.log import setup_logging
    from stok.settings import get_settings

    settings = get_settings()
    setup_logging(settings.log_level, verbose_format=False)

    async def _main() -> None:
        if settings.cluster == "memory":
            from stok.cluster import InMemoryCluster

            await operation(InMemoryCluster())
            return

        from stok.cluster.kube import KubeCluster

        cluster = await KubeCluster.connect(kube_context or settings.kube_context)
        try:
            await operation(cluster)
        finally:
            await cluster.close()

    try:
        asyncio.run(_main())
    except ContainerExitError as exc:
        sys.exit(exc.code)
    except (StokError, ClusterError) as exc:
        raise click.ClickException(str(exc)) from None


@click.group()
def main() -> None:
    """stok - run Terraform in Kubernetes workspaces."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from STOK_HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default: from STOK_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def controller(host: str | None, port: int | None, reload: bool) -> None:
    """Start the workspace controller."""
    import uvicorn

    from stok.settings import StokSettings

    settings = StokSettings()

    uvicorn.run(
        "stok.controller.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",  # uvicorn's own logging is intercepted by loguru
    )


# ---------------------------------------------------------------------------
# Workspaces
# ---------------------------------------------------------------------------


@main.group()
def workspace() -> None:
    """Workspace management commands."""


@workspace.command("new")
@click.argument("name", required=False)
@click.option("-n", "--namespace", default="default", show_default=True, help="Kubernetes namespace of workspace.")
@click.option("--path", default=".", show_default=True, help="Workspace config path.")
@click.option("--context", "kube_context", default=None, help="Kubernetes context.")
@click.option("--secret", default="stok", show_default=True, help="Name of Secret containing credentials.")
@click.option("--service-account", default="stok", show_default=True, help="Name of ServiceAccount.")
@click.option("--no-create-secret", is_flag=True, help="Disable creation of secret.")
@click.option("--no-create-service-account", is_flag=True, help="Disable creation of service account.")
@click.option(
    "--sa-annotations", multiple=True, callback=_parse_mapping, help="Annotations (KEY=VALUE) for the ServiceAccount."
)
@click.option("--size", default="1Gi", show_default=True, help="Size of PersistentVolume for cache.")
@click.option("--storage-class", default=None, help="StorageClass of PersistentVolume for cache.")
@click.option("--backend-type", default="local", show_default=True, help="Terraform backend type.")
@click.option("--backend-config", multiple=True, callback=_parse_mapping, help="Backend setting KEY=VALUE.")
@click.option("--variables", multiple=True, callback=_parse_mapping, help="Terraform variable KEY=VALUE.")
@click.option("--environment-variables", multiple=True, callback=_parse_mapping, help="Environment variable KEY=VALUE.")
@click.option("--privileged-commands", multiple=True, callback=_split_list, help="Commands requiring approval.")
@click.option("--backup-bucket", default=None, help="Bucket to restore state from (and back it up to).")
@click.option("--terraform-version", default=None, help="Override terraform version.")
@click.option("--timeout-client", default="10s", show_default=True, help="Time the installer waits for the client.")
@click.option("--reconcile-timeout", type=_TIMEOUT, default=None, help="Seconds to wait for reconciliation.")
@click.option("--pod-timeout", type=_TIMEOUT, default=None, help="Seconds to wait for the pod to be ready.")
@click.option("--restore-timeout", type=_TIMEOUT, default=None, help="Seconds to wait for the restore outcome.")
@click.option("--no-cleanup", is_flag=True, help="Do not delete created resources on error.")
@click.option("-v", "--verbose", "verbosity", count=True, help="Runner verbosity.")
def workspace_new(
    name: str | None,
    namespace: str,
    path: str,
    kube_context: str | None,
    secret: str,
    service_account: str,
    no_create_secret: bool,
    no_create_service_account: bool,
    sa_annotations: dict[str, str],
    size: str,
    storage_class: str | None,
    backend_type: str,
    backend_config: dict[str, str],
    variables: dict[str, str],
    environment_variables: dict[str, str],
    privileged_commands: list[str],
    backup_bucket: str | None,
    terraform_version: str | None,
    timeout_client: str,
    reconcile_timeout: float | None,
    pod_timeout: float | None,
    restore_timeout: float | None,
    no_cleanup: bool,
    verbosity: int,
) -> None:
    """Create a new workspace NAME."""
    from stok.client.errors import MissingArgumentError
    from stok.client.workspace import NewWorkspaceOptions, new_workspace
    from stok.models import BackendSpec, CacheSpec, WorkspaceSpec
    from stok.settings import get_settings

    if not name:
        raise click.ClickException(str(MissingArgumentError("workspace name")))

    settings = get_settings()
    options = NewWorkspaceOptions(
        name=name,
        namespace=namespace,
        path=path,
        spec=WorkspaceSpec(
            secret_name=secret,
            service_account_name=service_account,
            cache=CacheSpec(size=size, storage_class=storage_class),
            backend=BackendSpec(type=backend_type, config=backend_config),
            privileged_commands=privileged_commands,
            timeout_client=timeout_client,
            verbosity=verbosity,
            backup_bucket=backup_bucket,
            terraform_version=terraform_version,
        ),
        variables=variables,
        environment_variables=environment_variables,
        create_secret=not no_create_secret,
        create_service_account=not no_create_service_account,
        service_account_annotations=sa_annotations,
        reconcile_timeout=reconcile_timeout or settings.reconcile_timeout,
        pod_timeout=pod_timeout or settings.pod_timeout,
        restore_timeout=restore_timeout or settings.restore_timeout,
        exit_code_timeout=settings.exit_code_timeout,
        cleanup=not no_cleanup,
    )

    async def operation(cluster) -> None:
        await new_workspace(cluster, options)

    _run_client(kube_context, operation)


@workspace.command("show")
@click.option("--path", default=".", show_default=True, help="Workspace config path.")
def workspace_show(path: str) -> None:
    """Show the current workspace (namespace/name)."""
    from stok.client.env import StokEnv

    try:
        env = StokEnv.load(path)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from None
    click.echo(str(env))


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


@main.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.argument("command", required=False)
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.option("-n", "--namespace", default=None, help="Namespace (default: from the environment file).")
@click.option("-w", "--workspace", "workspace_name", default=None, help="Workspace (default: from the env file).")
@click.option("--path", default=".", show_default=True, help="Workspace config path.")
@click.option("--context", "kube_context", default=None, help="Kubernetes context.")
@click.option("--privileged", is_flag=True, help="Approve a privileged command.")
@click.option("--reconcile-timeout", type=_TIMEOUT, default=None, help="Seconds to wait for the run to be queued.")
@click.option("--pod-timeout", type=_TIMEOUT, default=None, help="Seconds to wait for the pod to be ready.")
@click.option("--no-cleanup", is_flag=True, help="Do not delete the run on error.")
def run(
    command: str | None,
    args: tuple[str, ...],
    namespace: str | None,
    workspace_name: str | None,
    path: str,
    kube_context: str | None,
    privileged: bool,
    reconcile_timeout: float | None,
    pod_timeout: float | None,
    no_cleanup: bool,
) -> None:
    """Run terraform COMMAND [ARGS]... in the current workspace."""
    from stok.client.errors import MissingArgumentError
    from stok.client.run import RunOptions, run_command
    from stok.settings import get_settings

    if not command:
        raise click.ClickException(str(MissingArgumentError("command")))

    settings = get_settings()
    options = RunOptions(
        command=command,
        args=list(args),
        workspace=workspace_name,
        namespace=namespace,
        path=path,
        privileged=privileged,
        reconcile_timeout=reconcile_timeout or settings.reconcile_timeout,
        pod_timeout=pod_timeout or settings.pod_timeout,
        exit_code_timeout=settings.exit_code_timeout,
        cleanup=not no_cleanup,
    )

    async def operation(cluster) -> None:
        await run_command(cluster, options)

    _run_client(kube_context, operation)


if __name__ == "__main__":
    main()
