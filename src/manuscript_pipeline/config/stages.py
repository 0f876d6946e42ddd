# src/manuscript_pipeline/config/stages.py — v1
"""Declarative stage table for the analysis DAG.

Stage classes declare their own dependencies and criticality; this module
lists which classes participate, how they are grouped for submission
options, and the progress weight each one contributes.
"""

from __future__ import annotations

# Version of the stage table below. Bump whenever a stage, an edge or a
# response contract changes; in-flight runs of another version fail.
DAG_VERSION = 1

# Fully qualified class paths for dynamic import by pipeline/registry.py.
STAGE_REGISTRY: list[str] = [
    # Required analysis chain
    "manuscript_pipeline.pipeline.stages.developmental.DevelopmentalStage",
    "manuscript_pipeline.pipeline.stages.line_editing.LineEditingStage",
    "manuscript_pipeline.pipeline.stages.copy_editing.CopyEditingStage",
    # Asset fan-out from developmental
    "manuscript_pipeline.pipeline.stages.book_description.BookDescriptionStage",
    "manuscript_pipeline.pipeline.stages.keywords.KeywordsStage",
    "manuscript_pipeline.pipeline.stages.categories.CategoriesStage",
    "manuscript_pipeline.pipeline.stages.author_bio.AuthorBioStage",
    "manuscript_pipeline.pipeline.stages.back_matter.BackMatterStage",
    "manuscript_pipeline.pipeline.stages.cover_brief.CoverBriefStage",
    "manuscript_pipeline.pipeline.stages.series_description.SeriesDescriptionStage",
    # Marketing
    "manuscript_pipeline.pipeline.stages.marketing.MarketAnalysisStage",
    "manuscript_pipeline.pipeline.stages.marketing.SocialMediaStage",
    # Audiobook suite
    "manuscript_pipeline.pipeline.stages.audiobook.AudiobookNarrationStage",
    "manuscript_pipeline.pipeline.stages.audiobook.AudiobookPronunciationStage",
    "manuscript_pipeline.pipeline.stages.audiobook.AudiobookTimingStage",
    "manuscript_pipeline.pipeline.stages.audiobook.AudiobookSamplesStage",
    "manuscript_pipeline.pipeline.stages.audiobook.AudiobookMetadataStage",
    # Formatting briefs (manuscript + metadata only)
    "manuscript_pipeline.pipeline.stages.formatting.EpubFormattingStage",
    "manuscript_pipeline.pipeline.stages.formatting.PdfFormattingStage",
]

# Stage groups selectable at submission time. "analysis" is always included.
STAGE_GROUPS: dict[str, list[str]] = {
    "analysis": ["developmental", "lineEditing", "copyEditing"],
    "assets": [
        "bookDescription",
        "keywords",
        "categories",
        "authorBio",
        "backMatter",
        "coverBrief",
        "seriesDescription",
    ],
    "marketing": ["marketAnalysis", "socialMedia"],
    "audiobook": [
        "audiobookNarration",
        "audiobookPronunciation",
        "audiobookTiming",
        "audiobookSamples",
        "audiobookMetadata",
    ],
    "formatting": ["epub", "pdf"],
}

# Progress weights. Required analyses span 0-75, assets 75-95,
# marketing and audiobook 95-100. Formatting does not move the bar.
PROGRESS_WEIGHTS: dict[str, float] = {
    "developmental": 25.0,
    "lineEditing": 25.0,
    "copyEditing": 25.0,
    "bookDescription": 4.0,
    "keywords": 3.0,
    "categories": 3.0,
    "authorBio": 3.0,
    "backMatter": 2.0,
    "coverBrief": 3.0,
    "seriesDescription": 2.0,
    "marketAnalysis": 1.0,
    "socialMedia": 1.0,
    "audiobookNarration": 0.6,
    "audiobookPronunciation": 0.6,
    "audiobookTiming": 0.6,
    "audiobookSamples": 0.6,
    "audiobookMetadata": 0.6,
    "epub": 0.0,
    "pdf": 0.0,
}
