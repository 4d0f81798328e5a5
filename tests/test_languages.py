from __future__ import annotations

from codeassist.indexing.languages import GENERIC
from codeassist.indexing.languages import get_profile
from codeassist.indexing.languages import infer_language_from_path


def test_infer_language_from_path() -> None:
    assert infer_language_from_path(path="src/app.py") == "python"
    assert infer_language_from_path(path="web/App.TSX") == "typescript"
    assert infer_language_from_path(path="cmd/main.go") == "go"
    assert infer_language_from_path(path="Makefile") == "unknown"
    assert infer_language_from_path(path="dir.v2/README") == "unknown"


def test_unknown_language_falls_back_to_generic() -> None:
    assert get_profile("cobol") is GENERIC
    assert get_profile(None) is GENERIC
    assert get_profile("Python").language == "python"


def test_python_profile() -> None:
    profile = get_profile("python")
    assert profile.is_chunk_boundary("def handler(event):")
    assert profile.is_chunk_boundary("@app.get('/')")
    assert profile.is_header_line("@dataclass")
    assert not profile.is_chunk_boundary("    def nested(self):")
    assert profile.chunk_type_of("def test_login():") == "test"
    assert profile.chunk_type_of("class Store(Protocol):") == "interface"
    assert profile.chunk_type_of("# just a comment") == "documentation"
    assert profile.extract_name("async def fetch(url):") == "fetch"
    assert profile.extract_dependency_targets("import os, sys as system\nfrom .models import User") == {
        "os",
        "sys",
        ".models",
    }


def test_typescript_profile() -> None:
    profile = get_profile("typescript")
    assert profile.chunk_type_of("export interface User {") == "interface"
    assert profile.chunk_type_of("export type Id = string;") == "interface"
    assert profile.chunk_type_of("export const Button = (props: Props) => {") == "component"
    assert profile.chunk_type_of("export const formatDate = (d: Date) => {") == "function"
    assert profile.chunk_type_of("describe('auth', () => {") == "test"
    assert profile.extract_name("export default function App() {") == "App"
    assert profile.extract_dependency_targets("import { x } from './utils';\nconst y = require('lodash');") == {
        "./utils",
        "lodash",
    }


def test_go_profile() -> None:
    profile = get_profile("go")
    assert profile.chunk_type_of("func TestParse(t *testing.T) {") == "test"
    assert profile.chunk_type_of("func (s *Server) Start() error {") == "function"
    assert profile.extract_name("func (s *Server) Start() error {") == "Start"
    assert profile.chunk_type_of("type Reader interface {") == "interface"
    deps = profile.extract_dependency_targets('import (\n\t"fmt"\n\tlog "github.com/x/log"\n)')
    assert deps == {"fmt", "github.com/x/log"}


def test_java_and_rust_profiles() -> None:
    java = get_profile("java")
    assert java.is_header_line("@Override")
    assert not java.is_header_line("@interface Marker {")
    assert java.chunk_type_of("public final class UserServiceTest {") == "test"
    assert java.chunk_type_of("public interface Repo {") == "interface"
    assert java.extract_dependency_targets("import java.util.List;\nimport static org.junit.Assert.*;") == {
        "java.util.List",
        "org.junit.Assert",
    }

    rust = get_profile("rust")
    assert rust.is_header_line("#[derive(Debug)]")
    assert rust.chunk_type_of("pub trait Store {") == "interface"
    assert rust.chunk_type_of("mod tests {") == "test"
    assert rust.extract_name("impl Display for Token {") == "Token"
    assert rust.extract_dependency_targets("use std::collections::HashMap;\nuse crate::models::{A, B};") == {
        "std::collections::HashMap",
        "crate::models",
    }


def test_markdown_and_generic_profiles() -> None:
    markdown = get_profile("markdown")
    assert markdown.is_chunk_boundary("## Installation")
    assert markdown.extract_name("## Installation") == "Installation"
    assert markdown.chunk_type_of("plain text") == "documentation"

    assert GENERIC.chunk_type_of("#include <stdio.h>") == "import"
    assert GENERIC.extract_name("int main(void) {") == "main"
    assert not GENERIC.is_chunk_boundary("if (x) {")
    assert GENERIC.extract_dependency_targets('#include "util.h"') == {"util.h"}
