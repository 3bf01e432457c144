"""
Customer-facing WhatsApp message texts
"""

from datetime import datetime

from .config import BUSINESS_NAME
from .shared.validators import format_currency
from .utils.dates import WEEKDAY_NAMES, format_br_date

MENU_TEXT = (
    "What would you like to do?\n\n"
    "1️⃣ Book an appointment\n"
    "2️⃣ My appointments\n"
    "3️⃣ Reschedule an appointment\n"
    "4️⃣ Cancel an appointment\n"
    "5️⃣ Talk to an attendant\n\n"
    "Reply with the option number."
)

GENERIC_ERROR = "😕 Sorry, something went wrong on our side. Please try again, or type MENU to go back to the menu."


def number_emoji(n: int) -> str:
    """1 -> 1️⃣, 10 -> 🔟, 12 -> 1️⃣2️⃣"""
    if n == 10:
        return "🔟"
    return "".join(f"{digit}️⃣" for digit in str(n))


def describe_appointment(start_at: datetime) -> str:
    return f"{WEEKDAY_NAMES[start_at.weekday()]}, {format_br_date(start_at.date())} at {start_at:%H:%M}"


# ============================================================================
# REGISTRATION
# ============================================================================


def welcome() -> str:
    return (
        f"👋 Hello! Welcome to {BUSINESS_NAME}.\n\n"
        "I'm the virtual assistant and I can help you book, reschedule or cancel appointments.\n\n"
        "To get started, what is your full name?"
    )


def ask_name() -> str:
    return "Let's finish your registration. What is your full name?"


def invalid_name() -> str:
    return "Please send your full name (at least 3 characters)."


def ask_tax_id(name: str) -> str:
    first_name = name.split()[0] if name else ""
    return f"Nice to meet you, {first_name}! 😊\n\nNow please send your CPF (numbers only)."


def invalid_tax_id() -> str:
    return "❌ That CPF doesn't look valid. Please send the 11 digits of your CPF."


def ask_email() -> str:
    return "Almost done! What is your email address?\n\nType SKIP if you prefer not to share it."


def invalid_email() -> str:
    return "❌ That email doesn't look valid. Please send a valid address or type SKIP."


def registration_complete(name: str) -> str:
    first_name = name.split()[0] if name else ""
    return f"✅ All set, {first_name}! Your registration is complete.\n\n{MENU_TEXT}"


# ============================================================================
# MENU
# ============================================================================


def main_menu() -> str:
    return MENU_TEXT


def invalid_option() -> str:
    return f"Sorry, I didn't understand that option.\n\n{MENU_TEXT}"


# ============================================================================
# BOOKING
# ============================================================================


def ask_date() -> str:
    return "📅 Which date would you like? Send it as DD/MM/YYYY (for example 15/01/2026)."


def invalid_date() -> str:
    return "❌ Invalid date. Please use the DD/MM/YYYY format (for example 15/01/2026)."


def past_date() -> str:
    return "❌ That date has already passed. Please choose a future date."


def no_slots(date_str: str) -> str:
    return f"😕 There are no free times on {date_str}. Please send another date (DD/MM/YYYY)."


def slot_list(date_str: str, slots: list[str]) -> str:
    lines = [f"{number_emoji(i)} {slot}" for i, slot in enumerate(slots, start=1)]
    return (
        f"🕐 Available times on {date_str}:\n\n"
        + "\n".join(lines)
        + "\n\nReply with the option number or the time (HH:MM)."
    )


def invalid_slot_choice() -> str:
    return "❌ Invalid choice. Please reply with one of the option numbers or times listed."


def slot_taken() -> str:
    return "⚠️ Sorry, that time was just taken. Here are the times still available:"


def booking_confirmed(start_at: datetime, price: float) -> str:
    return (
        "✅ Appointment booked!\n\n"
        f"📅 {describe_appointment(start_at)}\n"
        f"💰 {format_currency(price)}\n\n"
        f"You'll get a reminder before the appointment.\n\n{MENU_TEXT}"
    )


# ============================================================================
# APPOINTMENT LISTS / RESCHEDULE / CANCEL
# ============================================================================


def no_appointments() -> str:
    return f"You don't have any upcoming appointments.\n\n{MENU_TEXT}"


def appointment_lines(starts: list[datetime]) -> str:
    return "\n".join(f"{number_emoji(i)} {describe_appointment(s)}" for i, s in enumerate(starts, start=1))


def my_appointments(starts: list[datetime]) -> str:
    return f"📋 Your upcoming appointments:\n\n{appointment_lines(starts)}\n\n{MENU_TEXT}"


def choose_appointment(starts: list[datetime], action: str) -> str:
    return f"Which appointment would you like to {action}?\n\n{appointment_lines(starts)}\n\nReply with the option number."


def invalid_appointment_choice() -> str:
    return "❌ Invalid choice. Please reply with one of the option numbers listed, or type MENU."


def reschedule_ask_date(start_at: datetime) -> str:
    return f"Rescheduling the appointment on {describe_appointment(start_at)}.\n\n{ask_date()}"


def reschedule_done(old_start: datetime, new_start: datetime) -> str:
    return (
        "✅ Appointment rescheduled!\n\n"
        f"Before: {describe_appointment(old_start)}\n"
        f"Now: {describe_appointment(new_start)}\n\n{MENU_TEXT}"
    )


def appointment_unavailable() -> str:
    return f"⚠️ That appointment can no longer be changed.\n\n{MENU_TEXT}"


def confirm_cancel(start_at: datetime) -> str:
    return f"Cancel the appointment on {describe_appointment(start_at)}?\n\nReply YES to confirm or NO to keep it."


def yes_no_reprompt() -> str:
    return "Please reply YES to confirm the cancellation or NO to keep the appointment."


def cancel_done(start_at: datetime) -> str:
    return f"✅ Your appointment on {describe_appointment(start_at)} was cancelled.\n\n{MENU_TEXT}"


def cancel_aborted() -> str:
    return f"👍 Ok, your appointment was kept.\n\n{MENU_TEXT}"


def appointment_confirmed(start_at: datetime) -> str:
    return f"✅ Thanks! Your appointment on {describe_appointment(start_at)} is confirmed.\n\n{MENU_TEXT}"


# ============================================================================
# HANDOFF
# ============================================================================


def handoff_started() -> str:
    return (
        "👤 I'm transferring you to an attendant. Please wait, someone will answer shortly.\n\n"
        "Type MENU at any time to go back to the automatic menu."
    )


def handoff_holding() -> str:
    return "👤 You're talking to our team. An attendant will reply soon. Type MENU to go back to the automatic menu."


def handoff_finished() -> str:
    return f"The attendance was finished. Thank you! 😊\n\n{MENU_TEXT}"


# ============================================================================
# BILLING / REMINDERS
# ============================================================================


def payment_link(start_at: datetime, amount: float, due_date, link: str = None, pix: str = None, boleto: str = None) -> str:
    lines = [
        f"🧾 Invoice for your appointment on {describe_appointment(start_at)}",
        f"💰 Amount: {format_currency(amount)}",
        f"📅 Due date: {format_br_date(due_date)}",
    ]
    if link:
        lines.append(f"\n🔗 Pay here: {link}")
    if pix:
        lines.append(f"\nPIX copy and paste:\n{pix}")
    if boleto:
        lines.append(f"\nBoleto line:\n{boleto}")
    return "\n".join(lines)


def payment_received(amount: float) -> str:
    return f"✅ We received your payment of {format_currency(amount)}. Thank you!"


def reminder_24h(start_at: datetime) -> str:
    return (
        f"⏰ Reminder: you have an appointment tomorrow, {describe_appointment(start_at)}.\n\n"
        "Reply OK to confirm, or type MENU to reschedule or cancel."
    )


def reminder_2h(start_at: datetime) -> str:
    return f"⏰ Your appointment starts soon: today at {start_at:%H:%M}. See you there!"
