import os
import time

import httpx
import pandas as pd
import streamlit as st

API = os.getenv("REMIND_API", "http://localhost:8000")
REFRESH_SEC = 3.0

RISK_LABEL = {"low": "Low", "medium": "Medium", "high": "High"}

st.set_page_config(page_title="ReMind Dashboard", layout="wide")
st.title("ReMind — Cognitive Deviation Dashboard")
st.caption("Research heuristic only. Always interpret in the context of clinical assessment, "
           "medications, and baseline cognitive function.")

def api(method: str, path: str, **kw):
    try:
        r = httpx.request(method, f"{API}{path}", timeout=10.0, **kw)
    except httpx.HTTPError as e:
        st.error(f"API unreachable: {e}")
        return None
    if r.status_code >= 400:
        st.error(r.json().get("error", r.text) if r.headers.get("content-type", "").startswith("application/json") else r.text)
        return None
    return r.json()

left, right = st.columns([1, 2])

with left:
    st.subheader("Patient")
    patient = {
        "id": st.text_input("Patient ID"),
        "name": st.text_input("Name"),
        "age": st.text_input("Age"),
        "location": st.text_input("Location"),
        "notes": st.text_area("Notes"),
    }

    st.subheader("Game result")
    with st.form("result-form", clear_on_submit=True):
        sequence_length = st.number_input("Sequence length", min_value=0, value=5, step=1)
        rounds_played = st.number_input("Rounds played", min_value=0, value=10, step=1)
        rounds_correct = st.number_input("Rounds correct", min_value=0, value=9, step=1)
        avg_reaction = st.number_input("Average reaction (ms)", min_value=0.0, value=2000.0, step=50.0)
        if st.form_submit_button("Add result"):
            if rounds_correct > rounds_played:
                st.warning("Rounds correct cannot be greater than rounds played.")
            else:
                api("POST", "/api/results", json={
                    "sequenceLength": int(sequence_length),
                    "roundsPlayed": int(rounds_played),
                    "roundsCorrect": int(rounds_correct),
                    "avgReactionMs": float(avg_reaction),
                    "patient": patient,
                })

    if st.button("Demo session"):
        api("POST", "/api/demo", json=patient)

    st.subheader("Baseline")
    current = (api("GET", "/api/baseline") or {}).get("baseline", {"kind": "score", "expectedScore": 9.5})
    with st.form("baseline-form"):
        kinds = ["score", "accuracy"]
        kind = st.radio("Formula", kinds, index=kinds.index(current.get("kind", "score")), horizontal=True)
        expected = st.number_input("Expected score", min_value=0.1, value=float(current.get("expectedScore", 9.5)))
        accuracy = st.number_input("Expected accuracy", min_value=0.01, max_value=1.0,
                                   value=float(current.get("accuracy", 0.9)))
        reaction = st.number_input("Mean reaction (ms)", min_value=1.0,
                                   value=float(current.get("meanReactionMs", 1800.0)))
        if st.form_submit_button("Apply baseline"):
            body = {"kind": kind, "expectedScore": expected} if kind == "score" else \
                {"kind": kind, "accuracy": accuracy, "meanReactionMs": reaction}
            api("PUT", "/api/baseline", json=body)

with right:
    latest = api("GET", "/api/results/latest") or {}
    session = latest.get("session")
    st.subheader("Latest")
    if not session:
        st.info("No data yet. Enter a result to see the cognitive deviation score.")
    else:
        c1, c2, c3 = st.columns(3)
        c1.metric("Deviation score", f"{session['deviationScore']:.0f} / 100")
        c2.metric("Risk", RISK_LABEL[session["riskLevel"]])
        c3.metric("Accuracy", f"{session['accuracy'] * 100:.1f}%")
        st.progress(min(1.0, session["deviationScore"] / 100.0))
        st.write(latest.get("description") or "")

    st.subheader("History")
    sessions = (api("GET", "/api/results") or {}).get("sessions", [])
    if not sessions:
        st.caption("No sessions yet.")
    else:
        df = pd.DataFrame([{
            "Time": pd.to_datetime(s["timestamp"]).tz_convert(None).strftime("%d %b %Y %H:%M"),
            "Patient": s["patient"].get("id") or s["patient"].get("name") or "—",
            "Source": s["source"],
            "Score": s["score"],
            "Accuracy": f"{s['accuracy'] * 100:.1f}%",
            "Reaction (ms)": round(s["avgReactionMs"]),
            "Deviation": round(s["deviationScore"]),
            "Risk": RISK_LABEL[s["riskLevel"]],
        } for s in sessions])
        st.dataframe(df, use_container_width=True, hide_index=True)

auto = st.sidebar.toggle("Auto-refresh", value=True)
if auto:
    time.sleep(REFRESH_SEC)
    st.rerun()
