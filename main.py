"""
This is the main entry point for the ClinicDesk Streamlit application.

This script handles the following key responsibilities:
- Sets the overall page configuration for the Streamlit app.
- Configures logging from `CLINICDESK_LOG_LEVEL`.
- Initializes the `ClinicService`, which owns the record store and the activity log.
- Hands rendering over to `gui.show_main_app`.
"""
# main.py

import logging

import streamlit as st

from clinicdesk import config
from clinicdesk.clinic import ClinicService
import gui

# Set the basic configuration for the Streamlit page.
st.set_page_config(
    page_title="ClinicDesk",
    layout="wide"
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


# Service Initialization
@st.cache_resource
def get_clinic_service():
    """
    Initializes and returns the ClinicService instance.

    This function is decorated with `@st.cache_resource` so the service, and with it
    the activity log's in-memory ID counter and subscribers, is created once per
    server process and survives app reruns.

    Returns:
        ClinicService: The shared service instance.
    """
    return ClinicService()


service = get_clinic_service()
gui.show_main_app(service)
