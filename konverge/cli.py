import asyncio
import dataclasses
import functools
from collections.abc import Mapping, Sequence
from typing import Any, Callable, TextIO

import click
import yaml

from konverge._cogs.clients import auth
from konverge._cogs.configs import configuration
from konverge._cogs.structs import clusters
from konverge._core.actions import clusters as cluster_actions
from konverge._core.actions import loggers
from konverge._core.reactor import running


@dataclasses.dataclass()
class CLIControls:
    """ `CliRunner` controls, which are impossible to pass via CLI. """
    info: auth.ConnectionInfo | None = None
    settings: configuration.ProviderSettings | None = None


class LogFormatParamType(click.Choice):

    def __init__(self) -> None:
        super().__init__(choices=[v.name.lower() for v in loggers.LogFormat])

    def convert(self, value: Any, param: Any, ctx: Any) -> loggers.LogFormat:
        name: str = super().convert(value, param, ctx)
        return loggers.LogFormat[name.upper()]


def logging_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ A decorator to configure logging in all commands the same way."""
    @click.option('-v', '--verbose', is_flag=True)
    @click.option('-d', '--debug', is_flag=True)
    @click.option('-q', '--quiet', is_flag=True)
    @click.option('--log-format', type=LogFormatParamType(), default='full')
    @click.option('--log-refkey', type=str)
    @click.option('--log-prefix/--no-log-prefix', default=None)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(verbose: bool, quiet: bool, debug: bool,
                log_format: loggers.LogFormat = loggers.LogFormat.FULL,
                log_prefix: bool | None = None,
                log_refkey: str | None = None,
                *args: Any, **kwargs: Any) -> Any:
        loggers.configure(debug=debug, verbose=verbose, quiet=quiet,
                          log_format=log_format, log_refkey=log_refkey, log_prefix=log_prefix)
        return fn(*args, **kwargs)

    return wrapper


def cluster_errors(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ Report the expected failures as short CLI errors, not as tracebacks. """
    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except (cluster_actions.ClusterError, auth.LoginError, running.OperationInterrupted) as e:
            raise click.ClickException(str(e)) from e
    return wrapper


@click.version_option(prog_name='konverge')
@click.group(name='konverge', context_settings=dict(
    auto_envvar_prefix='KONVERGE',
))
def main() -> None:
    pass


@main.command()
@logging_options
@click.option('-f', '--filename', 'file', type=click.File('r'), required=True)
@click.option('--timeout', type=click.FloatRange(min=0, min_open=True),
              help="How long to wait until the cluster is active.")
@click.make_pass_decorator(CLIControls, ensure=True)
@cluster_errors
def create(__controls: CLIControls, file: TextIO, timeout: float | None) -> None:
    """ Create a cluster and wait until it is active. """
    spec = _load_spec(file)
    settings = _get_settings(__controls, timeout=timeout)
    logger = loggers.ClusterLogger(label=spec.label, region=spec.region)

    async def operation(context: auth.APIContext, stopper: asyncio.Event) -> clusters.ClusterState:
        return await cluster_actions.create_cluster(
            spec, context=context, settings=settings, stopper=stopper, logger=logger)

    state = running.run(operation, info=__controls.info)
    _echo(state)


@main.command()
@logging_options
@click.argument('cluster_id')
@click.make_pass_decorator(CLIControls, ensure=True)
@cluster_errors
def read(__controls: CLIControls, cluster_id: str) -> None:
    """ Show the observed state of a cluster. """
    settings = _get_settings(__controls)
    logger = loggers.ClusterLogger(label=None, id=cluster_id)

    async def operation(context: auth.APIContext, stopper: asyncio.Event) -> clusters.ClusterState | None:
        return await cluster_actions.read_cluster(
            cluster_id, context=context, settings=settings, logger=logger)

    state = running.run(operation, info=__controls.info)
    if state is None:
        raise click.ClickException(f"The cluster {cluster_id} is not found.")
    _echo(state)


@main.command()
@logging_options
@click.argument('cluster_id')
@click.option('-f', '--filename', 'file', type=click.File('r'), required=True)
@click.make_pass_decorator(CLIControls, ensure=True)
@cluster_errors
def update(__controls: CLIControls, cluster_id: str, file: TextIO) -> None:
    """ Change the cluster's label and node pool as declared. """
    new = _load_spec(file)
    settings = _get_settings(__controls)
    logger = loggers.ClusterLogger(label=new.label, region=new.region, id=cluster_id)

    async def operation(context: auth.APIContext, stopper: asyncio.Event) -> clusters.ClusterState | None:
        current = await cluster_actions.read_cluster(
            cluster_id, context=context, settings=settings, logger=logger)
        if current is None:
            raise cluster_actions.ClusterError(f"The cluster {cluster_id} is not found.")
        return await cluster_actions.update_cluster(
            cluster_id, current.as_spec(), new, context=context, settings=settings, logger=logger)

    state = running.run(operation, info=__controls.info)
    if state is None:
        raise click.ClickException(f"The cluster {cluster_id} is not found after the update.")
    _echo(state)


@main.command()
@logging_options
@click.argument('cluster_id')
@click.make_pass_decorator(CLIControls, ensure=True)
@cluster_errors
def delete(__controls: CLIControls, cluster_id: str) -> None:
    """ Delete a cluster. """
    settings = _get_settings(__controls)
    logger = loggers.ClusterLogger(label=None, id=cluster_id)

    async def operation(context: auth.APIContext, stopper: asyncio.Event) -> None:
        await cluster_actions.delete_cluster(
            cluster_id, context=context, settings=settings, logger=logger)

    running.run(operation, info=__controls.info)


@main.command()
@logging_options
@click.argument('cluster_id')
@click.option('-t', '--target', type=str, default=cluster_actions.ACTIVE_STATE, show_default=True)
@click.option('-p', '--pending', 'pending', type=str, multiple=True,
              default=sorted(cluster_actions.PENDING_STATES), show_default=True)
@click.option('--timeout', type=click.FloatRange(min=0, min_open=True))
@click.make_pass_decorator(CLIControls, ensure=True)
@cluster_errors
def wait(
        __controls: CLIControls,
        cluster_id: str,
        target: str,
        pending: Sequence[str],
        timeout: float | None,
) -> None:
    """ Wait until the cluster has the target status. """
    settings = _get_settings(__controls, timeout=timeout, delay=0)
    logger = loggers.ClusterLogger(label=None, id=cluster_id)

    async def operation(context: auth.APIContext, stopper: asyncio.Event) -> None:
        await cluster_actions.wait_for_cluster(
            cluster_id, target=target, transient_states=frozenset(pending),
            context=context, settings=settings, stopper=stopper, logger=logger)

    running.run(operation, info=__controls.info)
    click.echo(target)


def _get_settings(
        controls: CLIControls,
        *,
        timeout: float | None = None,
        delay: float | None = None,
) -> configuration.ProviderSettings:
    # The controls can be shared by several invocations, so they are never modified.
    settings = controls.settings if controls.settings is not None else configuration.ProviderSettings()
    polling = settings.polling
    if timeout is not None:
        polling = dataclasses.replace(polling, timeout=timeout)
    if delay is not None:
        polling = dataclasses.replace(polling, delay=delay)
    return dataclasses.replace(settings, polling=polling)


def _load_spec(file: TextIO) -> clusters.ClusterSpec:
    data = yaml.safe_load(file)
    if not isinstance(data, Mapping):
        raise click.BadParameter("The cluster file must contain a mapping.", param_hint='--filename')
    try:
        return clusters.ClusterSpec.from_dict(data)
    except (ValueError, TypeError) as e:
        raise click.BadParameter(str(e), param_hint='--filename') from e


def _echo(state: clusters.ClusterState) -> None:
    click.echo(yaml.safe_dump(_plain(dataclasses.asdict(state)), sort_keys=False), nl=False)


def _plain(value: Any) -> Any:
    # YAML's safe dumper does not know tuples; the structs use them for immutability.
    if isinstance(value, Mapping):
        return {key: _plain(val) for key, val in value.items()}
    elif isinstance(value, (list, tuple)):
        return [_plain(val) for val in value]
    else:
        return value
