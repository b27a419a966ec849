# bus_tracker/shared/__init__.py
"""
Общие модели и события, которыми обмениваются сервисы.
"""
