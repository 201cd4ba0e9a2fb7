"""Click CLI group: init, quick, generate, validate, modify, run, and publish commands."""

from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path
from typing import Any

import click

from agentpack import __version__
from agentpack.codec import (
    UI_VARIANTS,
    create_package,
    extract_package,
    modify_package,
    read_integrity,
    verify_extracted,
)
from agentpack.config import get_settings, validate_settings
from agentpack.errors import AgentPackError
from agentpack.logging import configure_logging
from agentpack.manifest import validate_manifest

TEMPLATE_MANIFEST: dict[str, Any] = {
    "id": "my-agent",
    "name": "My AI Agent",
    "version": "1.0.0",
    "description": "A helpful AI assistant",
    "permissions": {"network": ["api.openai.com"], "storage": False, "code": False},
    "capabilities": {"memory": False, "code": False},
}

TEMPLATE_CODE = '''\
class Agent:
    def __init__(self, manifest, context):
        self.manifest = manifest
        self.context = context

    async def run(self, input):
        if not input:
            return {"message": f"{self.manifest['name']} is ready"}
        return {"echo": input}
'''


def _read_json(path: str) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"{path} is not valid JSON: {exc.msg}") from exc


def _read_package(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


class AliasedGroup(click.Group):
    """Group that also resolves the short command names."""

    aliases = {"gen": "generate", "val": "validate", "mod": "modify", "pub": "publish"}

    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        return super().get_command(ctx, self.aliases.get(cmd_name, cmd_name))


@click.group(cls=AliasedGroup)
@click.version_option(__version__, prog_name="agentpack")
def cli() -> None:
    """agentpack: single-file agent packages."""
    settings = get_settings()
    try:
        validate_settings(settings)
    except AgentPackError as exc:
        raise click.ClickException(str(exc)) from exc
    configure_logging(settings.log_level, env=settings.app_env)


@cli.command()
@click.option(
    "--dir",
    "target_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
)
def init(target_dir: Path) -> None:
    """Write manifest.json and agent.py templates."""
    target_dir.mkdir(parents=True, exist_ok=True)
    manifest_path = target_dir / "manifest.json"
    code_path = target_dir / "agent.py"
    for path in (manifest_path, code_path):
        if path.exists():
            raise click.ClickException(f"{path} already exists")
    manifest_path.write_text(json.dumps(TEMPLATE_MANIFEST, indent=2) + "\n", encoding="utf-8")
    code_path.write_text(TEMPLATE_CODE, encoding="utf-8")
    click.echo(f"created {manifest_path}")
    click.echo(f"created {code_path}")


@cli.command()
@click.option("--name", default="My AI Agent", show_default=True)
@click.option("--output", type=click.Path(), default="agent.html", show_default=True)
@click.option("--ui", type=click.Choice(UI_VARIANTS), default="full", show_default=True)
def quick(name: str, output: str, ui: str) -> None:
    """Create a package from the built-in template, no input files needed."""
    manifest = {
        **TEMPLATE_MANIFEST,
        "id": re.sub(r"\s+", "-", name.strip().lower()),
        "name": name,
    }
    problems = validate_manifest(manifest)
    if problems:
        raise click.ClickException("invalid manifest: " + "; ".join(problems))
    Path(output).write_text(create_package(manifest, TEMPLATE_CODE, ui=ui), encoding="utf-8")
    click.echo(f"generated {output}")


@cli.command()
@click.option("--manifest", "manifest_path", type=click.Path(exists=True), required=True)
@click.option("--code", "code_path", type=click.Path(exists=True), required=True)
@click.option("--output", type=click.Path(), default="agent.html", show_default=True)
@click.option("--ui", type=click.Choice(UI_VARIANTS), default="full", show_default=True)
@click.option("--styles", "styles_path", type=click.Path(exists=True), default=None)
@click.option("--memory", "memory_path", type=click.Path(exists=True), default=None)
def generate(
    manifest_path: str,
    code_path: str,
    output: str,
    ui: str,
    styles_path: str | None,
    memory_path: str | None,
) -> None:
    """Build an agent package from a manifest and code file."""
    manifest = _read_json(manifest_path)
    problems = validate_manifest(manifest)
    if problems:
        raise click.ClickException("invalid manifest: " + "; ".join(problems))
    code = Path(code_path).read_text(encoding="utf-8")
    styles = Path(styles_path).read_text(encoding="utf-8") if styles_path else ""
    memory = _read_json(memory_path) if memory_path else None
    try:
        document = create_package(manifest, code, memory=memory, styles=styles, ui=ui)
    except AgentPackError as exc:
        raise click.ClickException(str(exc)) from exc
    Path(output).write_text(document, encoding="utf-8")
    click.echo(f"generated {output}")


@cli.command()
@click.argument("file", type=click.Path(exists=True))
@click.option("--verbose", is_flag=True, help="Show manifest, permissions and fingerprints.")
def validate(file: str, verbose: bool) -> None:
    """Verify a package's integrity fingerprints."""
    document = _read_package(file)
    if read_integrity(document) is None:
        raise click.ClickException("validation failed: missing integrity hashes")
    try:
        package = extract_package(document)
    except AgentPackError as exc:
        raise click.ClickException(f"validation failed: {exc}") from exc
    if not verify_extracted(package):
        raise click.ClickException(
            "validation failed: integrity check failed; the file may have been tampered with"
        )
    click.echo("validation passed")
    if not verbose:
        return
    manifest = package.manifest
    click.echo(f"id: {manifest.get('id')}")
    click.echo(f"name: {manifest.get('name')}")
    click.echo(f"version: {manifest.get('version')}")
    permissions = manifest.get("permissions") or {}
    network = permissions.get("network") or []
    click.echo(f"network: {', '.join(network) if network else 'none'}")
    click.echo(f"storage: {bool(permissions.get('storage'))}")
    click.echo(f"code: {bool(permissions.get('code'))}")
    assert package.integrity is not None
    click.echo(f"manifest hash: {package.integrity.manifest[:16]}...")
    click.echo(f"code hash: {package.integrity.code[:16]}...")
    if package.has_memory:
        click.echo("memory: present")


@cli.command()
@click.argument("file", type=click.Path(exists=True))
@click.option("--code", "code_path", type=click.Path(exists=True), default=None)
@click.option("--memory", "memory_path", type=click.Path(exists=True), default=None)
@click.option("--styles", "styles_path", type=click.Path(exists=True), default=None)
@click.option("--output", type=click.Path(), default=None, help="Defaults to overwriting FILE.")
def modify(
    file: str,
    code_path: str | None,
    memory_path: str | None,
    styles_path: str | None,
    output: str | None,
) -> None:
    """Rebuild a package with replaced code, memory or styles."""
    changes: dict[str, Any] = {}
    if code_path:
        changes["code"] = Path(code_path).read_text(encoding="utf-8")
    if memory_path:
        changes["memory"] = _read_json(memory_path)
    if styles_path:
        changes["styles"] = Path(styles_path).read_text(encoding="utf-8")
    try:
        document = modify_package(_read_package(file), **changes)
    except AgentPackError as exc:
        raise click.ClickException(str(exc)) from exc
    target = output or file
    Path(target).write_text(document, encoding="utf-8")
    click.echo(f"modified {target}")


async def _run_package(document: str, inputs: list[str]) -> list[Any]:
    from agentpack.sandbox.bridge import SandboxSession

    async with SandboxSession(document) as session:
        return [await session.run(value) for value in inputs]


@cli.command()
@click.argument("file", type=click.Path(exists=True))
@click.option("--input", "inputs", multiple=True, help="Input for one run; repeatable.")
def run(file: str, inputs: tuple[str, ...]) -> None:
    """Verify a package and run its agent in a sandbox."""
    try:
        results = asyncio.run(_run_package(_read_package(file), list(inputs) or [""]))
    except AgentPackError as exc:
        raise click.ClickException(str(exc)) from exc
    for result in results:
        click.echo(json.dumps(result, indent=2, ensure_ascii=False))


@cli.command()
@click.argument("file", type=click.Path(exists=True))
@click.option("--registry", default=None, help="Registry URL.")
def publish(file: str, registry: str | None) -> None:
    """Validate a package for publishing (upload is not implemented)."""
    try:
        package = extract_package(_read_package(file))
    except AgentPackError as exc:
        raise click.ClickException(str(exc)) from exc
    if not verify_extracted(package):
        raise click.ClickException("cannot publish: package failed validation")
    target = registry or get_settings().registry_url
    click.echo(f"validated {package.manifest.get('id')} {package.manifest.get('version')}")
    click.echo(f"publishing to {target} is not implemented yet")


if __name__ == "__main__":
    cli()
