# filechat/ui/app.py
import streamlit as st
import requests

from filechat.config import API_BASE

st.set_page_config(page_title="File Chat", layout="wide")

if "history" not in st.session_state:
    st.session_state.history = []


def api_error(response) -> str:
    try:
        return response.json().get("detail", "Unknown error")
    except ValueError:
        return response.text or "Unknown error"


# ========== SETTINGS (SIDEBAR) ==========

st.sidebar.header("Settings")

try:
    status = requests.get(f"{API_BASE}/api/config/status").json()
    configured = status["configured"]
except Exception as e:
    configured = False
    st.sidebar.error(f"API Error: {str(e)}")

if configured:
    st.sidebar.success("API key configured")
else:
    st.sidebar.warning("API key not configured")

with st.sidebar.form("api_key_form"):
    new_key = st.text_input("Gemini API key", type="password")
    if st.form_submit_button("Test and apply"):
        response = requests.post(
            f"{API_BASE}/api/config/test-key", json={"api_key": new_key}
        )
        if response.status_code == 200:
            st.success(response.json()["message"])
            st.rerun()
        else:
            st.error(api_error(response))

if configured:
    usage_response = requests.get(f"{API_BASE}/api/config/usage")
    if usage_response.status_code == 200:
        usage = usage_response.json()
        st.sidebar.metric("Current model", usage["model"]["current"])
        st.sidebar.metric("Stored files", usage["files"]["total"])
        st.sidebar.metric("Fallbacks", usage["model"]["fallbacks"])
        with st.sidebar.expander("Limits"):
            st.json(usage["limits"])

st.title("File Chat")
st.write("Upload documents and images, then ask questions about them.")

if not configured:
    st.info("Configure a Gemini API key in the sidebar to get started.")
    st.stop()


# ========== UPLOAD ==========

st.header("Upload File")

uploaded_file = st.file_uploader(
    "Choose a file",
    type=["pdf", "txt", "md", "doc", "docx", "xls", "xlsx", "ppt", "pptx",
          "jpg", "jpeg", "png", "gif", "webp"],
)

if uploaded_file and st.button("Upload", type="primary"):
    with st.spinner("Uploading and processing file..."):
        files = {
            "file": (uploaded_file.name, uploaded_file.getvalue(), uploaded_file.type)
        }
        response = requests.post(f"{API_BASE}/api/files/upload", files=files)
        if response.status_code == 200:
            result = response.json()["file"]
            st.success(f"Uploaded {result['display_name']} ({result['id']})")
            st.rerun()
        else:
            st.error(f"Upload failed: {api_error(response)}")

st.divider()


# ========== FILE LIBRARY ==========

st.header("Files")

show_inactive = st.checkbox("Show inactive files", value=True)

files = []
response = requests.get(
    f"{API_BASE}/api/files",
    params={"include_inactive": str(show_inactive).lower()},
)

if response.status_code == 200:
    listing = response.json()
    files = listing["files"]

    col1, col2, col3 = st.columns(3)
    col1.metric("Total", listing["total"])
    col2.metric("Active", listing["active"])
    col3.metric("Inactive", listing["inactive"])

    for item in files:
        label = item["display_name"] or item["id"]
        with st.expander(f"{'' if item['is_active'] else '[inactive] '}{label}"):
            st.write(f"ID: {item['id']}")
            st.write(f"Type: {item['mime_type']}")
            st.write(f"State: {item['state']}")
            if item["size_bytes"]:
                st.write(f"Size: {item['size_bytes'] / 1024:.2f} KB")

            a, b = st.columns(2)
            action = "deactivate" if item["is_active"] else "activate"
            if a.button(action.capitalize(), key=f"{action}_{item['id']}"):
                requests.post(f"{API_BASE}/api/files/{item['id']}/{action}")
                st.rerun()
            if b.button("Delete", key=f"delete_{item['id']}"):
                del_response = requests.delete(f"{API_BASE}/api/files/{item['id']}")
                if del_response.status_code == 200:
                    st.rerun()
                else:
                    st.error(api_error(del_response))

    if not files:
        st.info("No files uploaded yet")
else:
    st.error(api_error(response))

st.divider()


# ========== CHAT ==========

st.header("Ask a Question")

active_files = {
    (f["display_name"] or f["id"]): f["id"] for f in files if f["is_active"]
}

selected = st.multiselect(
    "Files to use (leave empty to search all active files)",
    options=list(active_files.keys()),
)

for turn in st.session_state.history:
    with st.chat_message("user" if turn["role"] == "user" else "assistant"):
        st.markdown(turn["text"])

question = st.chat_input("Ask about your files")

if question:
    payload = {
        "question": question,
        "conversation_history": st.session_state.history,
    }
    if len(selected) == 1:
        payload["file_id"] = active_files[selected[0]]
    elif selected:
        payload["file_ids"] = [active_files[name] for name in selected]

    with st.spinner("Thinking..."):
        response = requests.post(f"{API_BASE}/api/files/chat", json=payload)

    if response.status_code == 200:
        result = response.json()
        st.session_state.history.append({"role": "user", "text": question})
        st.session_state.history.append({"role": "model", "text": result["response"]})
        st.rerun()
    else:
        st.error(api_error(response))

if st.session_state.history and st.button("Clear conversation"):
    st.session_state.history = []
    st.rerun()
