"""
Newsdesk

Topic tabs with streamed AI-generated news summaries. Users keep a list of
news topics, store their own Perplexity API key, and stream a cited summary
of recent developments for each topic.
"""

__version__ = "1.0.0"
__author__ = "Newsdesk Team"
__description__ = "Topic tabs with streamed AI news summaries"
