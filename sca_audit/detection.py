"""Technology detection — find which package managers a directory tree uses.

A technology is detected in a directory when one of its indicator files is
present there. The result maps every detected technology to its working
directories and, for each of them, the descriptor (manifest) files found.
"""

from __future__ import annotations

import fnmatch
import os
import re
from collections.abc import Iterable
from pathlib import Path

import structlog

from sca_audit.exceptions import DetectionError
from sca_audit.technologies import Technology

log = structlog.get_logger("sca_audit.detection")

DEFAULT_EXCLUDE_PATTERNS = ["*.git*", "*node_modules*", "*target*", "*venv*", "*test*"]

TechnologyDescriptors = dict[Technology, dict[str, list[str]]]

# (indicator globs, descriptor globs), matched against file names
_TECH_FILES: dict[Technology, tuple[list[str], list[str]]] = {
    Technology.MAVEN: (["pom.xml"], ["pom.xml"]),
    Technology.GRADLE: (["*.gradle", "*.gradle.kts"], ["build.gradle", "build.gradle.kts"]),
    Technology.NPM: (
        ["package.json", "package-lock.json", "npm-shrinkwrap.json"],
        ["package.json"],
    ),
    Technology.YARN: ([".yarnrc.yml", "yarn.lock"], ["package.json"]),
    Technology.GO: (["go.mod"], ["go.mod"]),
    Technology.PIP: (["setup.py", "requirements*.txt"], ["setup.py", "requirements*.txt"]),
    Technology.PIPENV: (["Pipfile", "Pipfile.lock"], ["Pipfile"]),
    Technology.POETRY: (["poetry.lock"], ["pyproject.toml"]),
    Technology.NUGET: (["*.sln", "*.csproj"], ["*.sln", "*.csproj"]),
    Technology.DOTNET: (["*.sln", "*.csproj"], ["*.sln", "*.csproj"]),
}

# A technology is dropped from a directory when one of these is detected there too.
_EXCLUDED_BY: dict[Technology, set[Technology]] = {
    Technology.NPM: {Technology.YARN},
    Technology.PIP: {Technology.PIPENV, Technology.POETRY},
}

# Technologies whose nested working directories belong to the outer project
# (Maven/Gradle modules, projects of a .sln).
_MODULE_TECHNOLOGIES = {Technology.MAVEN, Technology.GRADLE, Technology.NUGET, Technology.DOTNET}


def prepare_exclude_pattern(exclusions: Iterable[str] | None) -> re.Pattern[str] | None:
    """Compile exclusion globs into one regex; defaults apply when none are given."""
    patterns = [p for p in (exclusions or []) if p] or list(DEFAULT_EXCLUDE_PATTERNS)
    if not patterns:
        return None
    return re.compile("|".join(f"(?:{fnmatch.translate(p)})" for p in patterns))


def _matches_any(file_name: str, globs: Iterable[str]) -> list[str]:
    return [g for g in globs if fnmatch.fnmatchcase(file_name, g)]


def _is_poetry_project(directory: Path, file_names: set[str]) -> bool:
    if "poetry.lock" in file_names:
        return True
    pyproject = directory / "pyproject.toml"
    if "pyproject.toml" not in file_names:
        return False
    try:
        return "[tool.poetry" in pyproject.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return False


class TechnologyDetector:
    """Detect technologies and their descriptor files under a directory."""

    def detect(
        self,
        directory: str,
        recursive: bool,
        requested_technologies: list[Technology] | None = None,
        requested_descriptors: dict[Technology, list[str]] | None = None,
        exclude_pattern: re.Pattern[str] | None = None,
    ) -> TechnologyDescriptors:
        """
        Detect technologies in *directory*.

        Args:
            directory: Directory to inspect.
            recursive: Walk sub-directories too (pruning excluded ones).
            requested_technologies: Restrict the result to these; a requested
                technology that was not found maps to an empty dict.
            requested_descriptors: Extra descriptor file names per technology
                (e.g. a custom requirements file), treated as indicators.
            exclude_pattern: Compiled pattern matched against directory paths
                relative to *directory*.

        Returns:
            ``{technology: {working_dir: [descriptor paths]}}``
        """
        root = Path(directory)
        if not root.is_dir():
            raise DetectionError(f"{directory} is not a directory")
        root = root.resolve()
        requested = list(dict.fromkeys(requested_technologies or []))
        extra_files = {
            tech: [Path(d).name for d in descriptors]
            for tech, descriptors in (requested_descriptors or {}).items()
        }

        found: TechnologyDescriptors = {}
        for current, file_names in self._walk(root, recursive, exclude_pattern):
            for tech, descriptors in self._detect_in_dir(current, file_names, extra_files).items():
                if requested and tech not in requested:
                    continue
                found.setdefault(tech, {})[str(current)] = descriptors

        for tech in list(found):
            if tech in _MODULE_TECHNOLOGIES:
                found[tech] = self._fold_nested(found[tech])

        result: TechnologyDescriptors = {}
        for tech in Technology:
            if tech in found:
                result[tech] = dict(sorted(found[tech].items()))
            elif tech in requested:
                result[tech] = {}
        log.debug(
            "detection.done",
            directory=str(root),
            recursive=recursive,
            technologies=[t.value for t in result],
        )
        return result

    @staticmethod
    def _walk(
        root: Path,
        recursive: bool,
        exclude_pattern: re.Pattern[str] | None,
    ) -> Iterable[tuple[Path, set[str]]]:
        if not recursive:
            try:
                names = {p.name for p in root.iterdir() if p.is_file()}
            except OSError as e:
                raise DetectionError(f"cannot list {root}: {e}") from e
            yield root, names
            return

        def _on_error(err: OSError) -> None:
            log.warning("detection.walk_error", path=getattr(err, "filename", ""), error=str(err))

        for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
            current = Path(dirpath)
            if exclude_pattern is not None:
                kept = []
                for name in sorted(dirnames):
                    rel = (current / name).relative_to(root).as_posix()
                    if exclude_pattern.match(rel) or exclude_pattern.match(name):
                        log.debug("detection.dir_excluded", path=rel)
                        continue
                    kept.append(name)
                dirnames[:] = kept
            else:
                dirnames.sort()
            yield current, set(filenames)

    @staticmethod
    def _detect_in_dir(
        directory: Path,
        file_names: set[str],
        extra_files: dict[Technology, list[str]],
    ) -> dict[Technology, list[str]]:
        detected: dict[Technology, list[str]] = {}
        for tech, (indicators, descriptor_globs) in _TECH_FILES.items():
            indicators = indicators + extra_files.get(tech, [])
            descriptor_globs = descriptor_globs + extra_files.get(tech, [])
            if tech is Technology.POETRY:
                hit = _is_poetry_project(directory, file_names)
            else:
                hit = any(_matches_any(name, indicators) for name in file_names)
            if not hit:
                continue
            detected[tech] = sorted(
                str(directory / name) for name in file_names if _matches_any(name, descriptor_globs)
            )

        for tech, excluders in _EXCLUDED_BY.items():
            if tech in detected and excluders & detected.keys():
                del detected[tech]
        return detected

    @staticmethod
    def _fold_nested(working_dirs: dict[str, list[str]]) -> dict[str, list[str]]:
        """Merge working directories nested under another one into the outer one."""
        folded: dict[str, list[str]] = {}
        for wd in sorted(working_dirs, key=lambda p: len(Path(p).parts)):
            parent = next((f for f in folded if Path(wd).is_relative_to(f)), None)
            if parent is None:
                folded[wd] = list(working_dirs[wd])
            else:
                folded[parent].extend(working_dirs[wd])
        return folded
