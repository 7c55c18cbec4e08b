from pathlib import Path
import textwrap

import pytest

from conclave.workspace import ProjectLoadError, ProjectLoader, build_dependency_graph, load_projects


def write_project(path: Path, *, name: str, description: str, dependencies: list[str] | None = None) -> None:
    deps = "\n".join(f"  - {dep}" for dep in dependencies or [])
    path.write_text(
        textwrap.dedent(
            """
            name: {name}
            description: {description}
            conventions:
              - Keep modules small
            """
        ).strip().format(name=name, description=description)
        + ("\ndependencies:\n" + deps if deps else ""),
        encoding="utf-8",
    )


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_project(base / "api.yaml", name="api", description="Base description")
    write_project(override / "api.yml", name="api", description="Override description")

    projects = ProjectLoader([base, override]).load_all()

    assert projects["api"].description == "Override description"
    assert projects["api"].conventions == ["Keep modules small"]


def test_loader_reads_project_lists_and_single_files(tmp_path: Path) -> None:
    catalog = tmp_path / "workspace.yaml"
    catalog.write_text(
        textwrap.dedent(
            """
            projects:
              - name: shared
              - name: api
                dependencies: [shared]
              - name: ui
                dependencies: [api, external-lib]
                tags: [frontend]
            """
        ),
        encoding="utf-8",
    )

    projects = load_projects([catalog])

    assert sorted(projects) == ["api", "shared", "ui"]
    assert build_dependency_graph(projects) == {
        "shared": [],
        "api": ["shared"],
        "ui": ["api"],
    }


def test_loader_handles_missing_paths(tmp_path: Path) -> None:
    loader = ProjectLoader([tmp_path / "absent", tmp_path])
    assert loader.search_paths == [tmp_path]
    assert loader.load_all() == {}


def test_loader_reports_validation_error(tmp_path: Path) -> None:
    (tmp_path / "broken.yaml").write_text("name: ' '\ndescription: test", encoding="utf-8")

    with pytest.raises(ProjectLoadError):
        ProjectLoader([tmp_path]).load_all()


def test_loader_reports_yaml_error(tmp_path: Path) -> None:
    (tmp_path / "broken.yaml").write_text("name: [unterminated", encoding="utf-8")

    with pytest.raises(ProjectLoadError, match="Failed to parse YAML"):
        ProjectLoader([tmp_path]).load_all()


def test_loader_get_unknown_project(tmp_path: Path) -> None:
    write_project(tmp_path / "api.yaml", name="api", description="API")

    loader = ProjectLoader([tmp_path])

    assert loader.get("api").name == "api"
    with pytest.raises(ProjectLoadError):
        loader.get("missing")
