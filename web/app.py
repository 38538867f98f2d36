#!/usr/bin/env python3
from __future__ import annotations

import io
import os
from typing import Optional

import pandas as pd
import streamlit as st

from catalog_import.config import ImportConfig
from catalog_import.conflicts import ResolutionStrategy, format_conflict_report
from catalog_import.errors import ImportPipelineError
from catalog_import.executor import format_import_results, outcomes_frame
from catalog_import.loader import MAX_FILE_BYTES, FileSource
from catalog_import.pipeline import ImportReport, preview, run_import
from catalog_import.store import CatalogStore, open_store
from catalog_import.validator import get_error_summary


SUPPORTED_EXTS = ["csv", "xlsx", "xls", "json"]
SEMESTER_OPTIONS = ["(keep from file)"] + [f"sem{level}" for level in range(1, 9)]
STRATEGY_OPTIONS = [strategy.value for strategy in ResolutionStrategy]
ROW_TAG_DEFAULT = "(use batch setting)"


def ensure_state() -> None:
    st.session_state.setdefault("preview_report", None)
    st.session_state.setdefault("import_report", None)
    st.session_state.setdefault("upload_signature", None)
    st.session_state.setdefault("store_url_input", os.environ.get("CATALOG_IMPORT_STORE_URL", ""))
    st.session_state.setdefault("store_file_input", "")


def current_store() -> Optional[CatalogStore]:
    url = st.session_state.get("store_url_input", "").strip() or None
    path = st.session_state.get("store_file_input", "").strip() or None
    return open_store(url=url, path=path, timeout=30.0)


def build_config(semester: str, department: str, id_strategy: str, code_strategy: str, apply_to_all: bool) -> ImportConfig:
    return ImportConfig(
        default_semester_id=None if semester == SEMESTER_OPTIONS[0] else semester,
        default_department_id=department.strip() or None,
        duplicate_id_strategy=id_strategy,
        duplicate_code_strategy=code_strategy,
        apply_to_all=apply_to_all,
    )


def build_row_tags(choices: dict[int, str]) -> dict[int, str]:
    """{1-based row number: widget choice} -> {0-based row index: strategy} for run_import."""
    return {
        row_number - 1: choice
        for row_number, choice in choices.items()
        if choice and choice != ROW_TAG_DEFAULT
    }


def render_row_choices(report: ImportReport) -> dict[int, str]:
    conflicts = report.conflicts
    if not conflicts or not conflicts.conflicting_rows:
        return {}
    options = [ROW_TAG_DEFAULT] + STRATEGY_OPTIONS
    choices: dict[int, str] = {}
    with st.expander("Resolve individual rows"):
        for item in conflicts.reports:
            if not item.has_conflict:
                continue
            row_number = item.row_index + 1
            choices[row_number] = st.selectbox(
                f"Row {row_number}: {item.record.name} ({item.record.code}), {item.conflict_type.value}",
                options,
                key=f"row_tag_{row_number}",
                help=f"Recommended: {item.recommended_resolution.value}",
            )
    return choices


def upload_source(upload) -> FileSource:
    return FileSource.from_bytes(upload.getvalue(), upload.name, upload.type)


def render_metrics(report: ImportReport) -> None:
    summary = report.validation.summary
    cols = st.columns(4)
    cols[0].metric("Rows", report.parse.total_rows)
    cols[1].metric("Valid", summary.valid_rows)
    cols[2].metric("Invalid", summary.invalid_rows)
    cols[3].metric("Conflicting", report.conflicts.conflicting_rows if report.conflicts else 0)


def render_preview(report: ImportReport) -> None:
    render_metrics(report)
    st.caption(f"Format: {report.parse.format}  •  Existing records: {report.snapshot_size}")

    for warning in report.warnings:
        st.warning(warning)

    invalid = report.validation.invalid_rows
    if invalid:
        with st.expander(f"Invalid rows ({len(invalid)})", expanded=len(invalid) <= 10):
            st.code("\n".join(get_error_summary(invalid)))

    conflicts = report.conflicts
    if conflicts and conflicts.conflicting_rows:
        frame = pd.DataFrame(
            [
                {
                    "row": item.row_index + 1,
                    "id": item.record.id,
                    "code": item.record.code,
                    "name": item.record.name,
                    "conflict": item.conflict_type.value,
                    "recommended": item.recommended_resolution.value,
                }
                for item in conflicts.reports
                if item.has_conflict
            ]
        )
        st.subheader("Conflicts")
        st.dataframe(frame, hide_index=True)
        with st.expander("Conflict details"):
            st.code("\n\n".join(format_conflict_report(item) for item in conflicts.reports if item.has_conflict))

    if report.plan is not None:
        plan = report.plan.to_dict()
        st.info(
            f"Plan: overwrite {plan['to_overwrite']}, keep both {plan['to_keep_both']}, skip {plan['to_skip']}"
        )


def render_import(report: ImportReport) -> None:
    result = report.result
    if result is None:
        return
    if result.success:
        st.success(format_import_results(result))
    else:
        st.error(format_import_results(result))
    frame = outcomes_frame(result)
    st.dataframe(frame, hide_index=True)
    buffer = io.StringIO()
    frame.to_csv(buffer, index=False)
    st.download_button(
        "Download outcomes (CSV)",
        data=buffer.getvalue().encode("utf-8"),
        file_name="import-outcomes.csv",
        mime="text/csv",
    )


def main() -> None:
    st.set_page_config(page_title="catalog-import", page_icon="📚", layout="wide")
    ensure_state()

    st.title("catalog-import")
    st.caption(
        f"Upload a CSV, Excel or JSON file of subjects (max {MAX_FILE_BYTES // (1024 * 1024)} MB), "
        "preview validation and conflicts, then commit to the catalog store."
    )

    left, right = st.columns(2)
    with left:
        st.text_input("Catalog store URL", key="store_url_input")
        st.text_input("...or catalog JSON file", key="store_file_input")
        upload = st.file_uploader("Subjects file", type=SUPPORTED_EXTS)
    with right:
        semester = st.selectbox("Default semester", SEMESTER_OPTIONS)
        department = st.text_input("Default department id", "")
        id_strategy = st.selectbox("Duplicate id strategy", STRATEGY_OPTIONS, index=STRATEGY_OPTIONS.index("overwrite"))
        code_strategy = st.selectbox("Duplicate code strategy", STRATEGY_OPTIONS, index=STRATEGY_OPTIONS.index("skip"))
        apply_to_all = st.checkbox("Apply strategies to every conflicting row", value=False)

    if upload is None:
        st.info("Choose a file to start.")
        return

    signature = (upload.name, upload.size)
    if st.session_state["upload_signature"] != signature:
        st.session_state["upload_signature"] = signature
        st.session_state["preview_report"] = None
        st.session_state["import_report"] = None

    try:
        store = current_store()
    except ImportPipelineError as exc:
        st.error(exc.message)
        return
    if store is None:
        st.warning("Configure a catalog store URL or JSON file first.")
        return

    try:
        config = build_config(semester, department, id_strategy, code_strategy, apply_to_all)
    except ImportPipelineError as exc:
        st.error(exc.message)
        return

    if st.button("Preview", type="primary"):
        try:
            st.session_state["preview_report"] = preview(upload_source(upload), store, config)
            st.session_state["import_report"] = None
        except ImportPipelineError as exc:
            st.error(exc.message)

    report = st.session_state["preview_report"]
    if report is None:
        return
    render_preview(report)

    excluded = st.multiselect(
        "Leave rows out of the import",
        options=[row.row_index + 1 for row in report.validation.valid_rows],
    )
    row_tags = build_row_tags(render_row_choices(report))
    if st.button("Import", disabled=not report.validation.valid_rows):
        try:
            st.session_state["import_report"] = run_import(
                upload_source(upload),
                store,
                config,
                row_tags=row_tags,
                excluded_rows=[row - 1 for row in excluded],
            )
        except ImportPipelineError as exc:
            st.error(exc.message)

    if st.session_state["import_report"] is not None:
        render_import(st.session_state["import_report"])


if __name__ == "__main__":
    main()
