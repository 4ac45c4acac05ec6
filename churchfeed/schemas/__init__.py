from churchfeed.schemas.auth import Token, UserLogin, UserResponse, MemberJoin
from churchfeed.schemas.church import ChurchLookupResponse, ChurchResponse, SubscriptionResponse
from churchfeed.schemas.post import PostCreate, PostResponse, ReactionSummaryEntry
from churchfeed.schemas.registration import ChurchRegistrationInput, PendingRegistration, CompletionResponse
