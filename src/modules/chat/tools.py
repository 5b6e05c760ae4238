"""OpenAI function-calling tool definitions for the site chat assistant.

Only ``collectContactInfo`` is executed server-side; every other call is
returned to the widget, which performs it in the visitor's browser.
"""

TOOL_COLLECT_CONTACT_INFO = "collectContactInfo"
TOOL_ASK_FOR_CONTACT = "askForContact"
TOOL_NAVIGATE_TO = "navigateTo"
TOOL_SCROLL_TO_SECTION = "scrollToSection"
TOOL_SHOW_NOTIFICATION = "showNotification"

TOOL_DEFINITIONS: list[dict] = [
    {
        "type": "function",
        "function": {
            "name": TOOL_NAVIGATE_TO,
            "description": (
                "Open another page of the site. Use it when the visitor wants to see "
                "a project or the contact page."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {
                        "type": "string",
                        "description": "Site path, e.g. /, /projects, /about, /contact, /projects/kmo24",
                    },
                },
                "required": ["path"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": TOOL_SCROLL_TO_SECTION,
            "description": "Scroll to a section of the current page.",
            "parameters": {
                "type": "object",
                "properties": {
                    "sectionId": {
                        "type": "string",
                        "description": "Section id: hero, projects, tech-stack, contact-form",
                    },
                },
                "required": ["sectionId"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": TOOL_SHOW_NOTIFICATION,
            "description": "Show a pop-up notification to the visitor.",
            "parameters": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Notification title"},
                    "message": {"type": "string", "description": "Notification text"},
                    "type": {
                        "type": "string",
                        "enum": ["info", "success", "warning"],
                        "description": "Notification kind",
                    },
                },
                "required": ["title", "message"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": TOOL_COLLECT_CONTACT_INFO,
            "description": (
                "Save the visitor's contact details. Call it as soon as the visitor "
                "gives a name together with a phone number or Telegram handle."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Visitor name"},
                    "contact": {
                        "type": "string",
                        "description": "Telegram (@username) or phone number",
                    },
                    "message": {
                        "type": "string",
                        "description": "Optional project description or note",
                    },
                },
                "required": ["name", "contact"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": TOOL_ASK_FOR_CONTACT,
            "description": (
                "Show the contact form in the widget. Call it when the visitor wants "
                "to order a project or talk to the developer."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "reason": {"type": "string", "description": "Why contacts are requested"},
                },
            },
        },
    },
]
