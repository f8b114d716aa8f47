"""provbuild CLI: dry-run, build and verify commands."""

import argparse
import logging
import sys
from importlib.metadata import version as get_version, PackageNotFoundError
from pathlib import Path
from typing import Optional


def _add_input_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--source-repo",
        required=True,
        help="URL of the source repository, optionally suffixed with @<ref>"
    )
    parser.add_argument(
        "--git-commit-digest",
        required=True,
        help="Commit the sources must be at, as sha1:<hex>"
    )
    parser.add_argument(
        "--builder-image",
        required=True,
        help="Builder image pinned by digest, as name[:tag]@sha256:<hex>"
    )
    parser.add_argument(
        "--build-config-path",
        required=True,
        help="Path of the TOML build config, relative to the repository root"
    )
    parser.add_argument(
        "--force-checkout",
        action="store_true",
        help="Clone a fresh copy even if the working directory is a checkout at another commit."
    )


def _echo_to_stderr(line: str) -> None:
    print(line, file=sys.stderr)


def _input_options(args):
    from .kernel.config import InputOptions

    return InputOptions(
        source_repo=args.source_repo,
        git_commit_digest=args.git_commit_digest,
        builder_image=args.builder_image,
        build_config_path=args.build_config_path,
        force_checkout=args.force_checkout,
        verbose=args.verbose,
    )


def main():
    """Main CLI entry point for provbuild commands."""
    # Get version for --version argument (handle PackageNotFoundError)
    try:
        provbuild_version = get_version("provbuild")
    except PackageNotFoundError:
        provbuild_version = "dev"

    parser = argparse.ArgumentParser(
        prog="provbuild",
        description="provbuild: build artifacts in a builder image and record verifiable provenance"
    )
    parser.add_argument("--version", action="version", version=f"provbuild {provbuild_version}")
    # Common arguments
    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress all non-error output."
    )
    parent_parser.add_argument(
        "--verbose",
        action="store_true",
        help="Echo the output of git and docker commands, and log debug details."
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # dry-run command
    dry_run_parser = subparsers.add_parser(
        "dry-run",
        help="Check out the sources, load the build config and write the build definition",
        parents=[parent_parser]
    )
    _add_input_arguments(dry_run_parser)
    dry_run_parser.add_argument(
        "--build-definition-path",
        type=Path,
        required=True,
        help="Where to write the build definition JSON"
    )

    # build command
    build_parser = subparsers.add_parser(
        "build",
        help="Run the build in the builder image and write the artifact subjects",
        parents=[parent_parser]
    )
    _add_input_arguments(build_parser)
    build_parser.add_argument(
        "--subjects-path",
        type=Path,
        default=None,
        help="Where to write the subjects JSON (defaults to stdout)"
    )
    build_parser.add_argument(
        "--output-folder",
        type=Path,
        default=None,
        help="Copy the artifacts here, keeping their path relative to the repository root"
    )

    # verify command
    verify_parser = subparsers.add_parser(
        "verify",
        help="Rebuild from a provenance statement and compare the artifacts",
        parents=[parent_parser]
    )
    verify_parser.add_argument(
        "--provenance-path",
        type=Path,
        required=True,
        help="Path to the provenance statement JSON"
    )
    verify_parser.add_argument(
        "--force-checkout",
        action="store_true",
        help="Clone a fresh copy even if the working directory is a checkout at another commit."
    )
    verify_parser.add_argument(
        "--output-folder",
        type=Path,
        default=None,
        help="Copy the rebuilt artifacts here"
    )
    verify_parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Output directory for the verification report"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    from ._internal.logging_setup import configure_logging

    if args.verbose:
        configure_logging(logging.DEBUG)
    elif args.quiet:
        configure_logging(logging.WARNING)
    else:
        configure_logging(logging.INFO)

    from .kernel.errors import ProvBuildError

    try:
        if args.command == "dry-run":
            from .api import dry_run, write_build_definition

            definition = dry_run(_input_options(args))
            out = write_build_definition(definition, args.build_definition_path)
            if not args.quiet:
                print("[OK] Dry run complete")
                print(f"  Build definition: {out}")
        elif args.command == "build":
            from .api import build, write_subjects
            from ._internal.canonical_json import canonical_dumps

            output_folder: Optional[Path] = None
            if args.output_folder:
                output_folder = Path(args.output_folder).resolve()

            if args.subjects_path is not None:
                subjects = build(_input_options(args), output_folder=output_folder)
                out = write_subjects(subjects, args.subjects_path)
                if not args.quiet:
                    print("[OK] Build complete")
                    print(f"  Subjects: {out}")
                    print(f"  Artifacts: {len(subjects)}")
            else:
                # stdout carries only the subjects JSON
                subjects = build(
                    _input_options(args),
                    output_folder=output_folder,
                    echo=_echo_to_stderr,
                )
                print(canonical_dumps([s.model_dump() for s in subjects]))
                if not args.quiet:
                    print(f"[OK] Build complete, {len(subjects)} artifacts", file=sys.stderr)
        elif args.command == "verify":
            from .api import verify_rebuild
            from ._internal.canonical_json import canonical_dumps

            output_folder = Path(args.output_folder).resolve() if args.output_folder else None
            result = verify_rebuild(
                Path(args.provenance_path).resolve(),
                force_checkout=args.force_checkout,
                output_folder=output_folder,
            )
            if args.output_dir is not None:
                output_dir = Path(args.output_dir).resolve()
                output_dir.mkdir(parents=True, exist_ok=True)
                report_out = output_dir / "verify_rebuild.json"
                report_out.write_text(canonical_dumps(result.model_dump()) + "\n", encoding="utf-8")
                if not args.quiet:
                    print(f"  Report: {report_out}")
            if not args.quiet:
                status = "OK" if result.ok else "FAILED"
                print(f"[{status}] Verification complete")
                print(f"  Subjects: {len(result.subjects)}")
                print(f"  Issues: {len(result.issues)}")
                for issue in result.issues:
                    print(f"    {issue.code}: {issue.message}")
            if not result.ok:
                sys.exit(1)
        else:
            parser.print_help()
            sys.exit(1)
    except ProvBuildError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
