from solanize.auth.controller import AuthController

__all__ = ["AuthController"]
