"""Simple Streamlit dashboard to step through a served trace.

The app polls the trace server's `/trace` and `/verdict` endpoints and
renders one column per node for the selected step: its in-channel, what it
read, and what it sent. Start the server with `python -m
canbus.runtime.run_server` first.
"""

import streamlit as st
import requests, time

st.set_page_config(page_title="CAN bus trace", layout="wide")
url = st.text_input("Trace server", "http://localhost:8000")
interval = st.slider("Refresh interval (sec)", 0.5, 5.0, 2.0)

try:
    trace = requests.get(url + "/trace", timeout=1).json()
    verdict = requests.get(url + "/verdict", timeout=1).json()
except Exception as e:
    st.error(str(e))
    time.sleep(interval)
    st.rerun()

if verdict["ok"] and not verdict["findings"]:
    st.success("trace is valid")
else:
    if verdict["violation"]:
        st.error(f"halted: {verdict['violation']}")
    for finding in verdict["findings"]:
        st.warning(f"{finding['invariant']}: {finding['detail']}")

steps = trace["steps"]
if steps:
    index = st.slider("Step", 0, len(steps) - 1, 0)
    step = steps[index]
    st.caption(f"available: {', '.join(step['available']) or '-'}")
    cols = st.columns(len(trace["nodes"]))
    for i, node in enumerate(trace["nodes"]):
        with cols[i]:
            st.subheader(node)
            st.json(
                {
                    "in_channel": step["in_channel"].get(node, []),
                    "read": step["read"].get(node, []),
                    "sent": step["sent"].get(node, []),
                }
            )
else:
    st.info("trace has no steps")

with st.expander("Messages"):
    st.table(trace["messages"])

time.sleep(interval)
st.rerun()
