"""
app.py — Core Circuit Studio
Main Streamlit application: Saturday circuit dashboard & booking,
admin circuit management, and the guided interval workout player,
all backed by Google Sheets.
"""

import streamlit as st
import pandas as pd
import numpy as np
import time as time_module
from datetime import datetime
from loguru import logger

from circuit_logic import (
    BookingError, Member, next_cadence_point, find_my_slot, attendance_summary,
    is_banned, time_until, booking_deadline, cancel_deadline, new_session,
    slot_missing_vips, book_slot, release_slot, join_waitlist, leave_waitlist,
    add_to_slot, remove_from_slot, mark_attendance, record_no_show, reset_strikes,
    STRIKE_LIMIT, MEMBER_TYPES, BOOKED, CONFIRMED,
)
from workout_logic import (
    IntervalTimer, WorkoutConfigError, EmptyPoolError, generate_workout, plan_rounds,
    workout_counts, LEVELS, TIME_OPTIONS, WEEKLY_TARGET,
    CUE_TICK, CUE_GO, COUNTDOWN, WORK, COMPLETE, EXITED,
)
from sheets_store import StudioStore, FetchError, open_spreadsheet

# ─────────────────────────────────────────────
# Page Config
# ─────────────────────────────────────────────

st.set_page_config(
    page_title="Core Circuit Studio",
    page_icon="💪",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .stApp { background: linear-gradient(135deg, #f7f7f5 0%, #e9ecef 100%); }

    .countdown-display, .timer-display {
        font-size: 2.5rem;
        font-weight: 300;
        text-align: center;
        color: #1d2b36;
        font-family: 'Courier New', monospace;
        padding: 0.5rem;
    }
    .timer-display.work { color: #c0392b; }
    .timer-display.rest { color: #2980b9; }

    .slot-card {
        background: white;
        border-radius: 12px;
        padding: 0.8rem 1rem;
        margin-bottom: 0.5rem;
        box-shadow: 0 2px 8px rgba(0,0,0,0.06);
        border-left: 4px solid #b0b7bf;
    }
    .slot-card.mine { border-left-color: #27ae60; }
    .slot-card.filled { border-left-color: #e67e22; }

    .studio-header { text-align: center; padding: 1rem 0 0.5rem 0; }
    .studio-header h1 { color: #1d2b36; font-weight: 300; font-size: 2.2rem; }
    .studio-header p { color: #6c7a89; font-style: italic; }
</style>
""", unsafe_allow_html=True)


# ─────────────────────────────────────────────
# Google Sheets Connection
# ─────────────────────────────────────────────

@st.cache_resource
def get_store():
    """Open the studio spreadsheet once per server process."""
    try:
        return StudioStore(open_spreadsheet(st.secrets))
    except FetchError as e:
        st.error(str(e))
        return None


# ─────────────────────────────────────────────
# Audio Cues
# ─────────────────────────────────────────────

SAMPLE_RATE = 22050
CUE_TONES = {
    CUE_TICK: (880, 0.15, 0.3),
    CUE_GO: (1200, 0.3, 0.4),
}


def tone(freq: float, seconds: float, volume: float) -> np.ndarray:
    t = np.linspace(0, seconds, int(SAMPLE_RATE * seconds), endpoint=False)
    return (volume * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def queue_cue(cue: str):
    st.session_state.pending_cues.append(cue)


def play_pending_cues():
    """Play the most recent cue raised since the last rerun."""
    cues = st.session_state.pending_cues
    if not cues:
        return
    freq, seconds, volume = CUE_TONES[cues[-1]]
    st.audio(tone(freq, seconds, volume), sample_rate=SAMPLE_RATE, autoplay=True)
    st.session_state.pending_cues = []


# ─────────────────────────────────────────────
# Session State Initialization
# ─────────────────────────────────────────────

DEFAULTS = {
    "view": "circuit",          # "circuit", "booking", "workouts", "history", "admin"
    "workout_view": "setup",    # "setup", "preview", "player", "complete"
    "workout": None,
    "timer": None,
    "level": "intermediate",
    "duration": 15,
    "pending_cues": [],
}
for key, val in DEFAULTS.items():
    if key not in st.session_state:
        st.session_state[key] = val


def toast_booking(action, success_msg: str) -> bool:
    """Run a booking action, showing its refusal or failure as a toast."""
    try:
        action()
    except BookingError as e:
        st.toast(str(e), icon="⚠️")
        return False
    except FetchError as e:
        st.error(f"Could not save: {e}")
        return False
    st.toast(success_msg, icon="✅")
    return True


# ─────────────────────────────────────────────
# View: Circuit Dashboard
# ─────────────────────────────────────────────

@st.fragment(run_every=1)
def live_countdown():
    """Countdown to the next class start, refreshed every second."""
    now = datetime.now()
    next_class = next_cadence_point(now)
    left = time_until(next_class, now)
    st.markdown(
        f'<div class="countdown-display">{left["days"]}d {left["hours"]:02d}h '
        f'{left["minutes"]:02d}m {left["seconds"]:02d}s</div>',
        unsafe_allow_html=True,
    )
    st.caption(f"{next_class:%A %d %B %Y} · Saturday 9:00am")


def render_circuit(store: StudioStore, member: Member):
    now = datetime.now()
    next_class = next_cadence_point(now)

    st.markdown(f"### Hey {member.name.split(' ')[0]}! Your Saturday session awaits.")
    live_countdown()

    try:
        session = store.get_session(next_class.date())
        summary = attendance_summary(store.list_sessions(), member, now)
    except FetchError as e:
        st.error(f"Could not load circuit data: {e}")
        return

    my_slot = find_my_slot(session, member.id)
    if my_slot and not my_slot.is_open:
        st.success(f"You're booked in: slot {my_slot.slot_number} ({my_slot.status})")
    else:
        st.info("You haven't booked this week's class yet.")

    stat1, stat2, stat3, stat4 = st.columns(4)
    with stat1:
        st.metric("Sessions Attended", summary.attended_count)
    with stat2:
        st.metric("Week Streak", summary.streak)
    with stat3:
        st.metric("Strikes", f"{summary.strikes}/{STRIKE_LIMIT}")
    with stat4:
        st.metric("Membership", member.type_label)

    if summary.is_banned(now):
        st.error(f"Booking suspended until {summary.ban_until:%A %d %B}")

    st.markdown("---")
    st.markdown("""
**House rules**
- Book by Wednesday night
- Cancel at least 24 hours before class
- 3 no-show strikes = 1 month booking ban
""")


# ─────────────────────────────────────────────
# View: Booking
# ─────────────────────────────────────────────

def load_or_create_session(store: StudioStore, now: datetime):
    class_date = next_cadence_point(now).date()
    session = store.get_session(class_date)
    vips = store.active_vips()
    if session is None:
        session = new_session(class_date, vips, now)
        store.save_session(session)
        return session
    session, changed = slot_missing_vips(session, vips, now)
    if changed:
        store.save_session(session)
    return session


def render_booking(store: StudioStore, member: Member):
    now = datetime.now()
    try:
        session = load_or_create_session(store, now)
    except FetchError as e:
        st.error(f"Failed to load session: {e}")
        return

    st.markdown(f"### 📅 {session.date:%A %d %B} · {session.time}–{session.end_time}")
    st.caption(f"{session.available_count} of {session.max_capacity} slots available")

    past_book = now > booking_deadline(session.date)
    past_cancel = now > cancel_deadline(session.date)
    banned = is_banned(member, now)
    if banned:
        st.error(f"You are suspended from booking until {member.circuit_ban_until:%d %B}")
    elif past_book:
        st.warning("Bookings for this week closed on Wednesday night.")

    mine = find_my_slot(session, member.id)
    has_slot = mine is not None and not mine.is_open
    on_waitlist = any(w.member_id == member.id for w in session.waitlist)

    for slot in session.slots:
        cols = st.columns([6, 2])
        css = "mine" if slot.member_id == member.id else ("filled" if not slot.is_open else "")
        label = slot.member_name if not slot.is_open else "Open"
        with cols[0]:
            st.markdown(
                f'<div class="slot-card {css}"><b>Slot {slot.slot_number}</b> · {label}</div>',
                unsafe_allow_html=True,
            )
        with cols[1]:
            if slot.is_open and not has_slot and not banned and not past_book:
                if st.button("Book", key=f"book_{slot.slot_number}"):
                    def action(n=slot.slot_number):
                        store.save_session(book_slot(session, member, n, now))
                    if toast_booking(action, "Slot booked!"):
                        st.rerun()

    st.markdown("---")
    if has_slot:
        if st.button("Release my slot", disabled=past_cancel):
            if toast_booking(
                lambda: store.save_session(release_slot(session, member.id, now)),
                "Slot released",
            ):
                st.rerun()
        if past_cancel:
            st.caption("Cancellation deadline passed (24hrs before class)")
    elif session.is_full:
        st.markdown(f"**Waitlist:** {len(session.waitlist)} waiting")
        if on_waitlist:
            if st.button("Leave waitlist"):
                if toast_booking(
                    lambda: store.save_session(leave_waitlist(session, member.id)),
                    "Removed from waitlist",
                ):
                    st.rerun()
        elif st.button("Join waitlist", disabled=banned):
            if toast_booking(
                lambda: store.save_session(join_waitlist(session, member, now)),
                "Added to waitlist!",
            ):
                st.rerun()


# ─────────────────────────────────────────────
# View: Workouts
# ─────────────────────────────────────────────

def build_workout(store: StudioStore) -> bool:
    """Generate a workout from the current setup, or return to setup on failure."""
    try:
        pool = store.list_exercises()
        workout = generate_workout(st.session_state.level, st.session_state.duration, pool)
    except FetchError as e:
        st.error(f"Failed to load exercises: {e}")
    except EmptyPoolError:
        st.error("No exercises found. Add videos to the exercise_library sheet.")
    except WorkoutConfigError as e:
        st.error(str(e))
    else:
        st.session_state.workout = workout
        st.session_state.workout_view = "preview"
        return True
    st.session_state.workout_view = "setup"
    return False


def save_workout_log(store: StudioStore, member_id: str, timer: IntervalTimer):
    try:
        store.append_workout_log(member_id, timer.workout, datetime.now())
    except FetchError as e:
        logger.warning(f"[WORKOUT] Log not saved for {member_id}: {e}")


def render_workouts(store: StudioStore, member: Member):
    view = st.session_state.workout_view

    if view == "setup":
        try:
            logs = store.load_workout_logs(member.id)
            completed = list(logs["Completed_At"]) if not logs.empty else []
        except FetchError:
            completed = []
        total, weekly = workout_counts(completed, datetime.now())
        c1, c2 = st.columns(2)
        with c1:
            st.metric("This Week", f"{weekly}/{WEEKLY_TARGET}")
        with c2:
            st.metric("All Time", total)

        st.markdown("### Build Your Workout")
        col1, col2 = st.columns(2)
        with col1:
            st.session_state.level = st.radio(
                "Level", list(LEVELS.keys()),
                index=list(LEVELS.keys()).index(st.session_state.level),
                format_func=lambda k: f"{LEVELS[k].label} ({LEVELS[k].desc})",
            )
        with col2:
            st.session_state.duration = st.select_slider(
                "Duration (min)", TIME_OPTIONS, value=st.session_state.duration,
            )
        if st.button("🎲 Generate Workout", type="primary", use_container_width=True):
            with st.spinner("Spinning up your workout..."):
                built = build_workout(store)
            if built:
                st.rerun()

    elif view == "preview" and st.session_state.workout:
        workout = st.session_state.workout
        total_intervals, _, _ = plan_rounds(workout.level, workout.duration_minutes)
        st.markdown(
            f"**{len(workout.exercises)} exercises** · **{workout.rounds} rounds** · "
            f"~**{workout.total_seconds // 60} min** ({workout.level.desc})"
        )
        st.caption(f"{total_intervals} intervals fit in {workout.duration_minutes} minutes")
        for i, ex in enumerate(workout.exercises):
            st.markdown(f"{i + 1}. {ex.name}")

        col_start, col_shuffle, col_back = st.columns(3)
        with col_start:
            if st.button("▶️ Start Workout", type="primary", use_container_width=True):
                timer = IntervalTimer(
                    workout,
                    on_cue=queue_cue,
                    on_complete=lambda t: save_workout_log(store, member.id, t),
                )
                timer.start()
                st.session_state.timer = timer
                st.session_state.workout_view = "player"
                st.rerun()
        with col_shuffle:
            if st.button("🔄 Reshuffle", use_container_width=True):
                if build_workout(store):
                    st.rerun()
        with col_back:
            if st.button("← Back", use_container_width=True):
                st.session_state.workout_view = "setup"
                st.rerun()

    elif view == "player" and st.session_state.timer:
        render_player(st.session_state.timer)

    elif view == "complete" and st.session_state.workout:
        workout = st.session_state.workout
        st.markdown("## 🎉 Workout Complete!")
        st.balloons()
        st.markdown(
            f"You completed **{workout.total_intervals} intervals** over "
            f"**{workout.rounds} rounds** (~{workout.total_seconds // 60} min). Amazing work!"
        )
        if st.button("🎲 New Workout"):
            st.session_state.workout = None
            st.session_state.timer = None
            st.session_state.workout_view = "setup"
            st.rerun()

    else:
        st.session_state.workout_view = "setup"
        st.rerun()


def render_player(timer: IntervalTimer):
    if timer.phase == COMPLETE:
        st.session_state.workout_view = "complete"
        st.rerun()
    if timer.phase == EXITED:
        st.session_state.timer = None
        st.session_state.workout_view = "setup"
        st.rerun()

    play_pending_cues()
    st.progress(
        timer.progress,
        text=f"Round {timer.round} of {timer.workout.rounds} · "
             f"Exercise {timer.exercise_index + 1} of {len(timer.workout.exercises)}",
    )

    if timer.phase == COUNTDOWN:
        st.markdown(f'<div class="timer-display">{timer.time_left}</div>',
                    unsafe_allow_html=True)
        st.caption("Get ready...")
    else:
        ex = timer.current_exercise
        label = "WORK" if timer.phase == WORK else "REST"
        st.markdown(f"## {ex.name}" if timer.phase == WORK else "## Rest")
        st.markdown(
            f'<div class="timer-display {timer.phase}">{label} · {timer.time_left}s</div>',
            unsafe_allow_html=True,
        )
        if timer.phase == WORK:
            if ex.video_url:
                st.video(ex.video_url, loop=True, autoplay=True, muted=True)
        else:
            nxt = timer.up_next
            st.caption(f"Up next: {nxt.name}" if nxt else "Last one, finish strong!")

    c1, c2, c3 = st.columns(3)
    with c1:
        if timer.paused:
            if st.button("▶ Resume", use_container_width=True):
                timer.resume()
                st.rerun()
        elif st.button("⏸ Pause", use_container_width=True):
            timer.pause()
            st.rerun()
    with c2:
        if st.button("⏭ Skip", use_container_width=True):
            timer.skip()
            st.rerun()
    with c3:
        if st.button("⏹ Stop", use_container_width=True):
            timer.stop()
            st.rerun()

    if timer.is_running:
        time_module.sleep(1)
        timer.tick()
        st.rerun()


# ─────────────────────────────────────────────
# View: History
# ─────────────────────────────────────────────

def render_history(store: StudioStore, member: Member):
    st.markdown(f"### 📖 Workout History — {member.name}")
    try:
        df = store.load_workout_logs(member.id)
    except FetchError as e:
        st.warning(f"Could not load history: {e}")
        return

    if df.empty:
        st.info("No workouts logged yet. Generate your first session! 🎲")
        return

    total, weekly = workout_counts(list(df["Completed_At"]), datetime.now())
    stat1, stat2, stat3 = st.columns(3)
    with stat1:
        st.metric("Total Workouts", total)
    with stat2:
        st.metric("This Week", f"{weekly}/{WEEKLY_TARGET}")
    with stat3:
        total_mins = pd.to_numeric(df["Duration"], errors="coerce").sum()
        st.metric("Total Minutes", f"{total_mins:.0f}")

    display_df = df[["Completed_At", "Level", "Duration", "Exercise_Count", "Rounds"]].copy()
    display_df.columns = ["Completed", "Level", "Duration (min)", "Exercises", "Rounds"]
    st.dataframe(display_df, use_container_width=True, hide_index=True)


# ─────────────────────────────────────────────
# View: Admin
# ─────────────────────────────────────────────

def render_admin(store: StudioStore):
    now = datetime.now()
    try:
        sessions = store.list_sessions()
        members = store.list_members()
    except FetchError as e:
        st.error(f"Failed to load circuit data: {e}")
        return
    by_id = {m.id: m for m in members}

    st.markdown("### 🛠 Circuit Management")
    if not sessions:
        st.info("No circuit sessions yet. One is created when the first member opens booking.")
    else:
        keys = [s.key for s in sessions]
        upcoming_key = next_cadence_point(now).date().isoformat()
        default = keys.index(upcoming_key) if upcoming_key in keys else 0
        chosen = st.selectbox("Session", keys, index=default)
        session = sessions[keys.index(chosen)]
        st.caption(f"{session.booked_count} booked · {session.available_count} available")

        for slot in session.slots:
            c1, c2, c3, c4 = st.columns([4, 1, 1, 1])
            with c1:
                who = slot.member_name or "Open"
                st.markdown(f"**{slot.slot_number}.** {who} · _{slot.status}_")
            if slot.member_id and slot.status in (BOOKED, CONFIRMED):
                with c2:
                    if st.button("✅", key=f"att_{slot.slot_number}", help="Mark attended"):
                        if toast_booking(
                            lambda n=slot.slot_number: store.save_session(
                                mark_attendance(session, n, True)),
                            f"{slot.member_name} marked as attended",
                        ):
                            st.rerun()
                with c3:
                    if st.button("❌", key=f"noshow_{slot.slot_number}", help="Mark no-show"):
                        def no_show(s=slot):
                            store.save_session(mark_attendance(session, s.slot_number, False))
                            m = by_id.get(s.member_id)
                            if m is not None:
                                store.save_member(record_no_show(m, now))
                        if toast_booking(no_show, f"No-show recorded - {slot.member_name}"):
                            st.rerun()
            if slot.member_id and not slot.is_open:
                with c4:
                    if st.button("🗑", key=f"rm_{slot.slot_number}", help="Remove from slot"):
                        if toast_booking(
                            lambda n=slot.slot_number: store.save_session(
                                remove_from_slot(session, n, now)),
                            "Member removed from slot",
                        ):
                            st.rerun()

        booked = {s.member_id for s in session.slots if s.member_id}
        waiting = {w.member_id for w in session.waitlist}
        free_members = [m for m in members if m.id not in booked | waiting]
        open_slots = [s.slot_number for s in session.slots if s.is_open]
        if free_members and open_slots:
            a1, a2, a3 = st.columns([3, 1, 1])
            with a1:
                pick = st.selectbox("Add member", free_members, format_func=lambda m: m.name)
            with a2:
                slot_no = st.selectbox("Slot", open_slots)
            with a3:
                if st.button("Add"):
                    if toast_booking(
                        lambda: store.save_session(add_to_slot(session, slot_no, pick, now)),
                        f"{pick.name} added to slot {slot_no}",
                    ):
                        st.rerun()

        if session.waitlist:
            st.markdown("#### Waitlist")
            for w in session.waitlist:
                w1, w2 = st.columns([5, 1])
                with w1:
                    st.markdown(f"{w.member_name} ({MEMBER_TYPES.get(w.member_type, 'Block')})")
                with w2:
                    if st.button("Remove", key=f"wl_{w.member_id}"):
                        if toast_booking(
                            lambda mid=w.member_id: store.save_session(
                                leave_waitlist(session, mid)),
                            "Removed from waitlist",
                        ):
                            st.rerun()

    st.markdown("---")
    st.markdown("#### Members")
    table = pd.DataFrame([
        {
            "Name": m.name,
            "Type": m.type_label,
            "Strikes": f"{m.circuit_strikes}/{STRIKE_LIMIT}",
            "Banned Until": m.circuit_ban_until.strftime("%d %b %Y") if is_banned(m, now) else "",
        }
        for m in members
    ])
    if not table.empty:
        st.dataframe(table, use_container_width=True, hide_index=True)

    flagged = [m for m in members if m.circuit_strikes > 0 or is_banned(m, now)]
    for m in flagged:
        label = "Lift Ban" if is_banned(m, now) else "Reset Strikes"
        if st.button(f"{label}: {m.name}", key=f"reset_{m.id}"):
            if toast_booking(lambda m=m: store.save_member(reset_strikes(m)),
                             f"Strikes reset for {m.name}"):
                st.rerun()


# ─────────────────────────────────────────────
# Composition Root
# ─────────────────────────────────────────────

store = get_store()
if store is None:
    st.stop()

try:
    members = store.list_members()
except FetchError as e:
    st.error(f"Could not load members: {e}")
    st.stop()

NAV = {
    "⏱ Circuit": "circuit",
    "📅 Book a Slot": "booking",
    "💪 Workouts": "workouts",
    "📖 History": "history",
    "🛠 Admin": "admin",
}

with st.sidebar:
    st.markdown("## 💪 Core Circuit Studio")
    st.markdown("---")
    if members:
        member = st.selectbox(
            "Select Member",
            members,
            format_func=lambda m: m.name,
            help="History and bookings are kept separately per member.",
        )
    else:
        member = None
        st.warning("No members yet. Add rows to the members sheet.")
    st.markdown("---")
    nav = st.radio("Navigate", list(NAV.keys()), label_visibility="collapsed")
    st.session_state.view = NAV[nav]
    st.markdown("---")
    st.caption("Core Circuit Studio v1.0")
    if member is not None:
        st.caption(f"Logged in as: **{member.name}**")

st.markdown("""
<div class="studio-header">
    <h1>Core Circuit Studio</h1>
    <p>Saturday circuits and interval workouts — show up, keep the streak</p>
</div>
""", unsafe_allow_html=True)

view = st.session_state.view
if view == "admin":
    render_admin(store)
elif member is None:
    st.info("Select a member to continue.")
elif view == "circuit":
    render_circuit(store, member)
elif view == "booking":
    render_booking(store, member)
elif view == "workouts":
    render_workouts(store, member)
elif view == "history":
    render_history(store, member)
