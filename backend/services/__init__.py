"""Services for the Bubble chat backend."""
from .stream_parser import StreamParser, ParsedResponse, ControlEvent, encode_control_event, parse_control_event
from .conversation_view import ConversationView, ViewEvent
from .credit_gate import CreditGate, CreditDecision
from .image_generator import ImageBackend, ImageBackendError, ImageFallbackGenerator, ImageResult
from .llm_client import LLMClient, LLMResponse, LLMError, LLMClientError
from .action_dispatcher import ActionDispatcher, DispatchResult, EmptyResponseError, TurnContext
from .memory_hook import MemoryExtractionHook
from .supabase_store import SupabaseStore, StoreError
from .turn_orchestrator import TurnOrchestrator, TurnResult, TurnState

__all__ = ['StreamParser', 'ParsedResponse', 'ControlEvent', 'encode_control_event', 'parse_control_event', 'ConversationView', 'ViewEvent', 'CreditGate', 'CreditDecision', 'ImageBackend', 'ImageBackendError', 'ImageFallbackGenerator', 'ImageResult', 'LLMClient', 'LLMResponse', 'LLMError', 'LLMClientError', 'ActionDispatcher', 'DispatchResult', 'EmptyResponseError', 'TurnContext', 'MemoryExtractionHook', 'SupabaseStore', 'StoreError', 'TurnOrchestrator', 'TurnResult', 'TurnState']
