from .play_title import PlayTitleUseCase, session_id_for

__all__ = ["PlayTitleUseCase", "session_id_for"]
