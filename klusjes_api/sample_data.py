"""Sample household and default room colour.

Free of database imports so the sync client can share them.
"""

from klusjes_api.status import TaskStatus

DEFAULT_ROOM_COLOR = "#6366f1"

SAMPLE_ROOMS = [
    {"id": "room_1", "name": "Woonkamer", "description": "Gezellige ruimte om te ontspannen", "color": "#6366f1"},
    {"id": "room_2", "name": "Keuken", "description": "Hart van het huis", "color": "#10b981"},
    {"id": "room_3", "name": "Slaapkamer", "description": "Rustige plek om uit te rusten", "color": "#8b5cf6"},
    {"id": "room_4", "name": "Badkamer", "description": "Voor persoonlijke verzorging", "color": "#f59e0b"},
    {"id": "room_5", "name": "Kantoor", "description": "Productieve werkruimte", "color": "#ef4444"},
    {"id": "room_6", "name": "Tuin", "description": "Groene buitenruimte", "color": "#22c55e"},
]

SAMPLE_TASKS = [
    {
        "id": "task_1",
        "room_id": "room_1",
        "title": "Stofzuigen",
        "description": "Hele woonkamer stofzuigen, ook onder de bank",
        "priority": False,
        "status": TaskStatus.todo,
        "estimated_duration": 30,
    },
    {
        "id": "task_2",
        "room_id": "room_2",
        "title": "Afwas doen",
        "description": "Alle vuile vaat opruimen",
        "priority": True,
        "status": TaskStatus.in_progress,
        "estimated_duration": 15,
    },
    {
        "id": "task_3",
        "room_id": "room_3",
        "title": "Bed opmaken",
        "description": "Lakens verschonen en bed netjes maken",
        "priority": False,
        "status": TaskStatus.completed,
        "estimated_duration": 5,
    },
]
