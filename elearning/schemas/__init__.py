from .common import (
	ApiResponse,
	Pagination,
	UserSummary,
	CourseSummary,
)
from .conversation import (
	ParticipantResponse,
	LastMessagePreview,
	ConversationResponse,
	ConversationListResponse,
	PinResponse,
	OnlineUsersResponse,
)
from .message import (
	MessageCreate,
	MessageUpdate,
	ReactionCreate,
	ReplyPreview,
	DeletedMessagePlaceholder,
	MessageResponse,
	MessageCursor,
	MessageListResponse,
	MessageSearchResponse,
	ReactionListResponse,
	UnreadCountResponse,
)

__all__ = [
	"ApiResponse",
	"Pagination",
	"UserSummary",
	"CourseSummary",
	"ParticipantResponse",
	"LastMessagePreview",
	"ConversationResponse",
	"ConversationListResponse",
	"PinResponse",
	"OnlineUsersResponse",
	"MessageCreate",
	"MessageUpdate",
	"ReactionCreate",
	"ReplyPreview",
	"DeletedMessagePlaceholder",
	"MessageResponse",
	"MessageCursor",
	"MessageListResponse",
	"MessageSearchResponse",
	"ReactionListResponse",
	"UnreadCountResponse",
]
