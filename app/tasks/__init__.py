from app.tasks.renewals import handle_renewal, run_renewal_batch

__all__ = [
    "handle_renewal",
    "run_renewal_batch",
]
