import functools
import pathlib

import click
import zrlog
from autoinject import injector

from streamstore.exc import StreamStoreError
from streamstore.storage import StreamStoreRegistry, StreamStore, FileInfo, walk


def _format_entry(info: FileInfo) -> str:
    kind = "d" if info.is_dir else "-"
    name = info.name + "/" if info.is_dir and info.name != "/" else info.name
    return f"{kind} {info.size: >12} {name}"


def _handle_errors(cb):

    @functools.wraps(cb)
    def _inner(*args, **kwargs):
        try:
            return cb(*args, **kwargs)
        except StreamStoreError as ex:
            raise click.ClickException(f"{ex.__class__.__name__}: {str(ex)}") from ex

    return _inner


@click.group
@click.argument("store_url")
@click.pass_context
@injector.inject
def main(ctx: click.Context, store_url: str, registry: StreamStoreRegistry = None):
    """Work with the files of the stream store at STORE_URL (e.g. file:///tmp or s3://bucket)."""
    zrlog.set_default_extra("store_url", store_url)
    try:
        store = registry.open(store_url)
    except StreamStoreError as ex:
        raise click.ClickException(f"{ex.__class__.__name__}: {str(ex)}") from ex
    ctx.obj = store
    ctx.call_on_close(store.close)


@main.command
@click.argument("path", default="/")
@click.pass_obj
@_handle_errors
def ls(store: StreamStore, path: str):
    """List the entries of a directory."""
    for info in store.readdir(path):
        click.echo(_format_entry(info))


@main.command
@click.argument("path")
@click.pass_obj
@_handle_errors
def stat(store: StreamStore, path: str):
    """Show the metadata of a file or directory."""
    info = store.stat(path)
    click.echo(f"name: {info.name}")
    click.echo(f"type: {'directory' if info.is_dir else 'file'}")
    click.echo(f"size: {info.size}")
    click.echo(f"mode: {oct(info.mode)}")
    click.echo(f"modified: {info.modified.isoformat() if info.modified else ''}")


@main.command
@click.argument("path")
@click.pass_obj
@_handle_errors
def cat(store: StreamStore, path: str):
    """Write the content of a file to standard output."""
    with store.open_read(path) as reader:
        for chunk in reader.iter_chunks():
            click.echo(chunk, nl=False)


@main.command
@click.argument("path")
@click.argument("local_file")
@click.option("--overwrite", is_flag=True, default=False)
@click.pass_obj
@_handle_errors
def get(store: StreamStore, path: str, local_file: str, overwrite: bool):
    """Download a file to LOCAL_FILE."""
    store.download(path, pathlib.Path(local_file), allow_overwrite=overwrite)
    click.echo(f"Downloaded {path} to {local_file}")


@main.command
@click.argument("local_file")
@click.argument("path")
@click.option("--overwrite", is_flag=True, default=False)
@click.pass_obj
@_handle_errors
def put(store: StreamStore, local_file: str, path: str, overwrite: bool):
    """Upload LOCAL_FILE to a path of the store."""
    store.upload(pathlib.Path(local_file), path, allow_overwrite=overwrite)
    click.echo(f"Uploaded {local_file} to {path}")


@main.command
@click.argument("path")
@click.option("--parents", "-p", is_flag=True, default=False, help="Create missing parent directories")
@click.pass_obj
@_handle_errors
def mkdir(store: StreamStore, path: str, parents: bool):
    """Create a directory."""
    if parents:
        store.mkdir_all(path)
    else:
        store.mkdir(path)


@main.command
@click.argument("path")
@click.pass_obj
@_handle_errors
def rm(store: StreamStore, path: str):
    """Remove a file or an empty directory."""
    store.remove(path)


@main.command
@click.argument("path", default="/")
@click.pass_obj
@_handle_errors
def tree(store: StreamStore, path: str):
    """Print every path under a directory, parents before children."""

    def _visit(file_path, info, error):
        if error is not None:
            raise error
        click.echo(file_path + "/" if info.is_dir and not file_path.endswith("/") else file_path)

    walk(store, path, _visit)


def run():
    from streamstore.boot.boot import init_streamstore
    init_streamstore("cli")
    main()
