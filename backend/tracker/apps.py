from django.apps import AppConfig           # type: ignore


class TrackerConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'tracker'
    verbose_name = 'Budget Tracker'
