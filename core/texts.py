# Global UI Strings and Constants
APP_VERSION = "v1.0.0"

MAIN_MENU_TEXT = """
🎯 **Exam Prep Coach**

Your practice history drives everything here:
• 🔥 /streak: your daily practice streak
• 📉 /weak: sections that need attention
• 🗓 /revision: your spaced revision plan
• 🎟 /limits: free usage left
• 📊 /analytics: progress dashboard
"""

SIGN_IN_TEXT = "🔒 I couldn't tell who you are. Please open the bot from your own Telegram account and send /start."
NOT_FOUND_TEXT = "That item no longer exists."
GENERIC_ERROR_TEXT = "⚠️ Sorry, something went wrong. Please try again or send /start."
STORE_BUSY_TEXT = "⏳ The service is busy right now. Please try again in a moment."
STALE_BUTTON_TEXT = "This button is out of date. Please send /start."
FALLBACK_TEXT = "I don't know that command yet. Pick a section from the menu."

STREAK_STATUS_LABELS = {
    "active": "✅ practiced today",
    "at_risk": "⚠️ practice today to keep it",
    "broken": "💤 no active streak",
}

WEAKNESS_LABELS = {
    "critical": "🔴 critical",
    "moderate": "🟠 moderate",
    "improving": "🟡 improving",
}

NO_WEAK_SECTIONS_TEXT = "🎉 No weak sections right now. Keep practicing!"
NO_REVISIONS_TEXT = "🗓 Nothing scheduled. Weak sections will show up here for revision."
REVISION_DONE_TEXT = "✅ Revision marked as done."
REVISION_SKIPPED_TEXT = "⏭ Revision skipped. It will be planned again."
REVISION_CLOSED_TEXT = "This revision is already closed."

ANALYTICS_EMPTY_TEXT = "📊 No submitted tests in this period yet."
PRESET_LABELS = {
    "7d": "7 days",
    "30d": "30 days",
    "90d": "90 days",
    "all": "All time",
}

BTN_STREAK = "🔥 Streak"
BTN_WEAK = "📉 Weak sections"
BTN_REVISION = "🗓 Revision"
BTN_LIMITS = "🎟 Limits"
BTN_ANALYTICS = "📊 Analytics"
BTN_HOME = "🏠 Menu"
