#!/usr/bin/env python3
# unibundle/cli.py
"""
unibundle CLI - turn Swift package dependencies into prebuilt multi-platform bundles

Sub-commands:
- build       resolve configured packages, archive and assemble every product
- buildables  list what a package checkout would build
- headers     print the header closure of an umbrella header
- modulemap   complete one framework's modules/headers and print its module map
- cache       drop cached package descriptions
- config      print or validate the effective configuration
"""

from __future__ import annotations

import sys
import argparse
import dataclasses
from pathlib import Path
from typing import List, Optional

import yaml
from rich.console import Console
from rich.table import Table

from unibundle.modules import config as config_mod
from unibundle.modules import logging as logging_mod
from unibundle.modules.buildables import buildables
from unibundle.modules.config import ConfigError, Context
from unibundle.modules.headers import resolve_headers
from unibundle.modules.manifest import UnibundleError
from unibundle.modules.manifest_loader import ManifestLoader
from unibundle.modules.modulemap import ArchivedFramework, ModuleMapSynthesizer
from unibundle.modules.pipeline import Pipeline

logger = logging_mod.get_logger("cli")

console = Console()

# -----------------------
# Output helpers
# -----------------------
def print_ok(msg: str):
    console.print(f"[bold green]✔[/] {msg}")

def print_warn(msg: str):
    console.print(f"[bold yellow]![/] {msg}")

def print_err(msg: str):
    console.print(f"[bold red]✖[/] {msg}")

def print_info(msg: str):
    console.print(f"[cyan]{msg}[/cyan]")


class UnibundleCLI:
    def __init__(self, cfg: config_mod.Config):
        self.cfg = cfg
        self.context = Context.from_config(cfg)

    # --------------
    # build
    # --------------
    def build(self, jobs: Optional[int] = None, platforms: Optional[List[str]] = None,
              skip_if_exists: Optional[bool] = None):
        overrides = {}
        if jobs:
            overrides["jobs"] = jobs
        if platforms:
            unknown = [p for p in platforms if p not in config_mod.SUPPORTED_SDKS]
            if unknown:
                raise ConfigError(f"unsupported platform(s): {', '.join(unknown)}")
            overrides["platforms"] = tuple(platforms)
        if skip_if_exists is not None:
            overrides["skip_if_exists"] = skip_if_exists
        context = dataclasses.replace(self.context, **overrides)

        packages = self.cfg.get("packages", []) or []
        if not packages:
            print_warn("No packages configured")
            return []
        with console.status(f"building {len(packages)} package(s)"):
            artifacts = Pipeline(context, packages).run()

        table = Table(title="Artifacts")
        table.add_column("name")
        table.add_column("version")
        table.add_column("path")
        for a in artifacts:
            table.add_row(a.name, a.version, str(a.path))
        console.print(table)
        print_ok(f"{len(artifacts)} artifact(s) in {context.build_path}")
        return artifacts

    # --------------
    # inspection
    # --------------
    def list_buildables(self, package_dir: str):
        manifest = ManifestLoader(self.context).load(Path(package_dir))
        table = Table(title=f"{manifest.name} buildables")
        table.add_column("name")
        table.add_column("kind")
        for b in buildables(manifest):
            table.add_row(b.name, "binary" if b.is_binary else "source")
        console.print(table)

    def headers(self, umbrella: str, framework: Optional[str] = None, source_dir: Optional[str] = None):
        path = Path(umbrella)
        name = framework or path.stem
        for header in resolve_headers(path, name, Path(source_dir) if source_dir else path.parent):
            console.print(str(header), markup=False, highlight=False, soft_wrap=True)

    def modulemap(self, framework_path: str, package_dir: str, build_products: Optional[str] = None,
                  intermediates: Optional[str] = None):
        manifest = ManifestLoader(self.context).load(Path(package_dir))
        framework = ArchivedFramework(
            framework_path=Path(framework_path),
            build_products_dir=Path(build_products) if build_products else None,
            intermediates_dir=Path(intermediates) if intermediates else None,
        )
        text = ModuleMapSynthesizer(manifest, Path(package_dir)).synthesize(framework)
        if text is None:
            print_info(f"{framework.name} is Swift-only, no module map written")
        else:
            console.print(text, markup=False, highlight=False, soft_wrap=True)

    # --------------
    # maintenance
    # --------------
    def cache_clear(self, package_dir: Optional[str] = None):
        removed = ManifestLoader(self.context).invalidate(Path(package_dir) if package_dir else None)
        print_ok(f"removed {len(removed)} cache entr{'y' if len(removed) == 1 else 'ies'}")

    def config_cmd(self, print_cfg: bool = False, validate: bool = False) -> bool:
        if validate:
            ok, issues = config_mod.validate_config(self.cfg)
            if ok:
                print_ok(f"configuration valid ({self.cfg.path or 'defaults'})")
            for issue in issues:
                print_err(issue)
            return ok
        console.print(yaml.safe_dump(self.cfg.as_dict(), sort_keys=False), markup=False, highlight=False, soft_wrap=True)
        return True

# -----------------------
# Argparse wiring
# -----------------------
def make_parser():
    ap = argparse.ArgumentParser(prog="unibundle", description="Build Swift packages into prebuilt bundles")
    ap.add_argument("--config", help="path to a unibundle.yaml / .json file")
    ap.add_argument("--verbose", "-v", action="store_true", help="debug output on the console")
    ap.add_argument("--no-color", action="store_true", help="disable colored output")
    sub = ap.add_subparsers(dest="cmd")

    # build
    p_build = sub.add_parser("build", help="build every configured package")
    p_build.add_argument("--jobs", type=int, help="parallel platform archives per product")
    p_build.add_argument("--platform", action="append", dest="platforms", help="sdk to build (repeatable)")
    skip = p_build.add_mutually_exclusive_group()
    skip.add_argument("--skip-existing", dest="skip_if_exists", action="store_true", default=None)
    skip.add_argument("--force", dest="skip_if_exists", action="store_false")

    # inspection
    p_buildables = sub.add_parser("buildables", help="list buildables of a package checkout")
    p_buildables.add_argument("package_dir")
    p_headers = sub.add_parser("headers", help="print the header closure of an umbrella header")
    p_headers.add_argument("umbrella")
    p_headers.add_argument("--framework")
    p_headers.add_argument("--source-dir")
    p_modulemap = sub.add_parser("modulemap", help="synthesize modules and headers for one framework")
    p_modulemap.add_argument("framework_path")
    p_modulemap.add_argument("--package-dir", required=True)
    p_modulemap.add_argument("--build-products")
    p_modulemap.add_argument("--intermediates")

    # maintenance
    p_cache = sub.add_parser("cache", help="manifest cache maintenance")
    cache_sub = p_cache.add_subparsers(dest="cache_cmd")
    p_clear = cache_sub.add_parser("clear")
    p_clear.add_argument("package_dir", nargs="?")
    p_config = sub.add_parser("config", help="show or validate configuration")
    mode = p_config.add_mutually_exclusive_group()
    mode.add_argument("--print", dest="print_cfg", action="store_true")
    mode.add_argument("--validate", action="store_true")

    return ap

def _setup(args) -> config_mod.Config:
    global console
    if args.no_color:
        console = Console(no_color=True, highlight=False)
    cfg = config_mod.load(args.config, fatal=True)
    log_cfg = dict(cfg.get("logging", {}) or {})
    if args.verbose:
        log_cfg["level"] = "DEBUG"
    if args.no_color:
        log_cfg["color"] = False
    logging_mod.configure(log_cfg)
    return cfg

def main(argv: Optional[List[str]] = None):
    argv = argv if argv is not None else sys.argv[1:]
    parser = make_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return 0

    try:
        cli = UnibundleCLI(_setup(args))
        if args.cmd == "build":
            cli.build(jobs=args.jobs, platforms=args.platforms, skip_if_exists=args.skip_if_exists)
        elif args.cmd == "buildables":
            cli.list_buildables(args.package_dir)
        elif args.cmd == "headers":
            cli.headers(args.umbrella, framework=args.framework, source_dir=args.source_dir)
        elif args.cmd == "modulemap":
            cli.modulemap(args.framework_path, args.package_dir,
                          build_products=args.build_products, intermediates=args.intermediates)
        elif args.cmd == "cache":
            if args.cache_cmd != "clear":
                parser.parse_args(["cache", "--help"])
            cli.cache_clear(args.package_dir)
        elif args.cmd == "config":
            if not cli.config_cmd(print_cfg=args.print_cfg, validate=args.validate):
                sys.exit(2)
    except (UnibundleError, ConfigError) as e:
        print_err(f"Command failed: {e}")
        sys.exit(2)
    except Exception:
        console.print_exception()
        sys.exit(1)
    return 0

if __name__ == "__main__":
    main()
