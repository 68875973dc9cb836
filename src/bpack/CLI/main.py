# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Command Line Interface for bpack.
"""
import functools
import logging
import sys

import click

from ..errors import BpackError, SoftError
from ..MANAGERS.client import Client
from ..MODELS.options import BuilderInfo, CreateBuilderOptions, RebaseOptions
from ..PARSERS.builder_config_parser import BuilderConfigParser
from ..PARSERS.client_config_parser import read_config, write_config

logger = logging.getLogger(__name__)


def _handle_errors(f):
    """Report bpack errors and exit non-zero; soft errors were already reported."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except SoftError:
            sys.exit(1)
        except BpackError as e:
            click.echo(f"ERROR: {e}", err=True)
            sys.exit(1)
    return wrapper


def _client(ctx) -> Client:
    if 'client' not in ctx.obj:
        ctx.obj['client'] = Client()
    return ctx.obj['client']


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Show debug output')
@click.option('--quiet', '-q', is_flag=True, help='Show only warnings and errors')
@click.pass_context
def cli(ctx, verbose, quiet):
    """
    bpack - build builder images and rebase application images.
    """
    ctx.ensure_object(dict)
    level = logging.INFO
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(message)s")
    logging.getLogger("bpack").setLevel(level)


@cli.command('create-builder')
@click.argument('image_name')
@click.option('--builder-config', '-b', required=True, type=click.Path(dir_okay=False),
              help='Path to builder TOML file')
@click.option('--publish', is_flag=True, help='Publish to registry')
@click.option('--no-pull', is_flag=True, help='Skip pulling build image before use')
@click.pass_context
@_handle_errors
def create_builder(ctx, image_name, builder_config, publish, no_pull):
    """Create builder image"""
    config = BuilderConfigParser().parse(builder_config)
    _client(ctx).create_builder(CreateBuilderOptions(
        builder_name=image_name,
        builder_config=config,
        publish=publish,
        no_pull=no_pull,
    ))
    click.echo(f"Successfully created builder image {image_name}")


def _echo_builder_info(info: BuilderInfo) -> None:
    if info.description:
        click.echo(f"Description: {info.description}")
    if info.created_by.name:
        click.echo(f"Created By:\n  Name: {info.created_by.name}\n  Version: {info.created_by.version}")
    click.echo(f"Stack: {info.stack}")
    click.echo(f"Lifecycle:\n  Version: {info.lifecycle.version}")
    click.echo(f"Run Images:\n  {info.run_image}")
    for mirror in info.run_image_mirrors:
        click.echo(f"  {mirror}")

    click.echo("Buildpacks:")
    if not info.buildpacks:
        click.echo("  (none)")
    for bp in info.buildpacks:
        click.echo(f"  {bp.id:30} {bp.version:10} {'latest' if bp.latest else ''}".rstrip())

    click.echo("Detection Order:")
    if not info.groups:
        click.echo("  (none)")
    for i, group in enumerate(info.groups, start=1):
        click.echo(f"  Group #{i}:")
        for bp in group.buildpacks:
            suffix = " (optional)" if bp.optional else ""
            click.echo(f"    {bp.id}@{bp.version}{suffix}")


@cli.command('inspect-builder')
@click.argument('image_name', required=False)
@click.pass_context
@_handle_errors
def inspect_builder(ctx, image_name):
    """Show information about a builder"""
    if not image_name:
        image_name = read_config().default_builder_image
        if not image_name:
            logger.error("Please select a default builder with:\n\n  bpack set-default-builder <builder image>")
            raise SoftError()

    client = _client(ctx)
    for title, daemon in (("Remote", False), ("Local", True)):
        click.echo(f"{title}\n{'-' * len(title)}\n")
        try:
            info = client.inspect_builder(image_name, daemon)
        except BpackError as e:
            click.echo(f"ERROR: {e}\n")
            continue
        if info is None:
            click.echo("Not present\n")
            continue
        _echo_builder_info(info)
        click.echo("")


@cli.command()
@click.argument('image_name')
@click.option('--publish', is_flag=True, help='Publish to registry')
@click.option('--no-pull', is_flag=True, help='Skip pulling app and run images before use')
@click.option('--run-image', default='', help='Run image to use for rebasing')
@click.pass_context
@_handle_errors
def rebase(ctx, image_name, publish, no_pull, run_image):
    """Rebase app image with latest run image"""
    _client(ctx).rebase(RebaseOptions(
        repo_name=image_name,
        run_image=run_image,
        publish=publish,
        skip_pull=no_pull,
    ))
    click.echo(f"Successfully rebased image {image_name}")


@cli.command('set-default-builder')
@click.argument('image_name')
@_handle_errors
def set_default_builder(image_name):
    """Set default builder used by other commands"""
    config = read_config()
    config.set_default_builder(image_name)
    write_config(config)
    click.echo(f"Builder {image_name} is now the default builder")


@cli.command('set-run-image-mirrors')
@click.argument('run_image_name')
@click.option('--mirror', '-m', 'mirrors', multiple=True, required=True, help='Run image mirror')
@_handle_errors
def set_run_image_mirrors(run_image_name, mirrors):
    """Set mirrors to other repositories for a given run image"""
    config = read_config()
    config.set_run_image_mirrors(run_image_name, list(mirrors))
    write_config(config)
    for mirror in mirrors:
        click.echo(f"Run Image {run_image_name} configured with mirror {mirror}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
