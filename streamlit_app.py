"""
Demo Streamlit application for the form engine.
Loads a declared form and its data document, renders it and reports submits.
"""

import streamlit as st
import json
import logging
from pathlib import Path

from formengine.config_loader import get_config, get_config_value, get_engine_settings, validate_config
from formengine.declaration_loader import load_declarations, load_document
from formengine.error_handler import ErrorHandler, ErrorType
from formengine.form_engine import FormEngine, SubmitResult
from formengine.form_renderer import FormRenderer


def get_logging_level(level_str):
    """Map string logging level to logging constant."""
    level_map = {
        'DEBUG': logging.DEBUG,
        'INFO': logging.INFO,
        'WARNING': logging.WARNING,
        'ERROR': logging.ERROR,
        'CRITICAL': logging.CRITICAL
    }
    return level_map.get(str(level_str).upper(), logging.INFO)


# Configure logging dynamically from config
try:
    log_level_str = get_config_value('logging', 'level', 'INFO')
    logging.basicConfig(level=get_logging_level(log_level_str))
    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured to level: {log_level_str}")
except Exception as e:
    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)
    logger.error(f"Failed to configure logging from config: {e}, using INFO level")

st.set_page_config(
    page_title=get_config_value('ui', 'page_title', 'Form Engine'),
    page_icon="📝",
    layout="wide",
)

FORM_KEY = "order"


def init_session_state():
    """Initialize session state variables."""
    if 'last_result' not in st.session_state:
        st.session_state.last_result = None
    if 'change_log' not in st.session_state:
        st.session_state.change_log = 0


def load_form():
    """Load the declaration and data document named in config.yaml."""
    forms_dir = Path(get_config_value('forms', 'directory', 'forms'))
    declaration = load_declarations(forms_dir / get_config_value('forms', 'declaration', 'order_form.yaml'))
    document = load_document(forms_dir / get_config_value('forms', 'data', 'order.json'))
    return declaration, document


def on_submit(result: SubmitResult):
    st.session_state.last_result = result


def on_change(document):
    st.session_state.change_log += 1
    logger.debug(f"Document changed ({st.session_state.change_log} change(s) this session)")


def render_sidebar(engine: FormEngine):
    with st.sidebar:
        st.header("Form status")
        st.metric("Changed fields", len(engine.changed_fields()))
        st.metric("Open errors", len(engine.state.errors))
        if get_config_value('app', 'debug', False):
            with st.expander("Current document"):
                st.json(engine.get_values())


def render_result(result: SubmitResult):
    if result.valid:
        st.success("Form is valid." + (" Changes were submitted." if result.updated else " Nothing changed."))
    else:
        st.error(f"{len(result.invalid_fields)} field(s) are invalid.")
    with st.expander("Submitted document", expanded=result.valid):
        st.code(json.dumps(result.values, indent=2, default=str), language="json")


def main():
    """Main application entry point."""
    init_session_state()

    if not validate_config(get_config()):
        st.warning("⚠️ Some configuration settings are invalid, using defaults where necessary.")

    st.title(get_config_value('app', 'name', 'Form Engine Demo'))

    loaded = ErrorHandler.with_error_handling(
        load_form, "loading form", ErrorType.DECLARATION, default_return=None
    )
    if loaded is None:
        st.stop()
    declaration, document = loaded

    engine = FormEngine(
        declaration,
        data_source=document,
        storage=st.session_state,
        form_key=FORM_KEY,
        on_submit=on_submit,
        on_change=on_change,
        engine_settings=get_engine_settings(),
    )
    renderer = FormRenderer(engine, columns=2)

    render_sidebar(engine)

    if get_config_value('ui', 'show_error_summary', True):
        renderer.render_error_summary()

    ErrorHandler.with_error_handling(renderer.render, "rendering form", ErrorType.RENDER)

    col_submit, col_reset = st.columns(2)
    with col_submit:
        st.button("Submit", type="primary", on_click=engine.submit_sync, use_container_width=True)
    with col_reset:
        st.button("Reset", on_click=engine.reset, use_container_width=True)

    if st.session_state.last_result is not None:
        render_result(st.session_state.last_result)


if __name__ == "__main__":
    main()
