import pytest

from aiterm.errors import KnowledgeBaseUnavailable
from aiterm.knowledge import KnowledgeBaseStore


def test_list_returns_markdown_and_text_names(tmp_path) -> None:
    (tmp_path / "docker.md").write_text("docker notes", encoding="utf-8")
    (tmp_path / "k8s.txt").write_text("kubectl notes", encoding="utf-8")
    (tmp_path / "image.png").write_bytes(b"\x89PNG")

    assert KnowledgeBaseStore(tmp_path).list() == ["docker", "k8s"]


def test_list_is_empty_for_missing_directory(tmp_path) -> None:
    assert KnowledgeBaseStore(tmp_path / "nope").list() == []


def test_load_estimates_tokens(tmp_path) -> None:
    (tmp_path / "git.md").write_text("x" * 41, encoding="utf-8")

    kb = KnowledgeBaseStore(tmp_path).load("git")

    assert kb.name == "git"
    assert kb.estimated_tokens == 11
    assert kb.loaded is True


@pytest.mark.parametrize("name", ["missing", "../secrets", ""])
def test_read_rejects_missing_or_path_like_names(tmp_path, name: str) -> None:
    with pytest.raises(KnowledgeBaseUnavailable):
        KnowledgeBaseStore(tmp_path).read(name)
