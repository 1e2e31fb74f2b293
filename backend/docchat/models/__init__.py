from docchat.models.conversation import Chat, Message, Vote
from docchat.models.document import Document, Suggestion
from docchat.models.pdf import PdfReference

__all__ = ["Chat", "Message", "Vote", "Document", "Suggestion", "PdfReference"]
