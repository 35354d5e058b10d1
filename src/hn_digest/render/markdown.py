# src/hn_digest/render/markdown.py

from __future__ import annotations

from ..core.ports import DigestEntry

NO_DESCRIPTION = "暂无描述"


def post_filename(task_date: str) -> str:
    """Jekyll post filename: YYYY-MM-DD-daily.md"""
    return f"{task_date}-daily.md"


def front_matter(task_date: str) -> str:
    return (
        "---\n"
        "layout: post\n"
        f"title: HackerNews Daily - {task_date}\n"
        f"date: {task_date}\n"
        "---\n\n"
    )


def render_entry(entry: DigestEntry) -> str:
    title = entry.title_zh or entry.title_en
    description = entry.description or NO_DESCRIPTION

    parts = [
        f"## {entry.rank}. 【{title}】\n\n",
        f"{entry.title_en}\n\n",
        f"**发布时间**: {entry.time_str}\n\n",
        f"**链接**: [{entry.url}]({entry.url})\n\n",
        f"**描述**:\n\n{description}\n\n",
    ]
    if entry.comment_summary:
        parts.append(f"**评论要点**:\n\n{entry.comment_summary}\n\n")
    parts.append("---\n\n")
    return "".join(parts)


def render_markdown(entries: list[DigestEntry], task_date: str) -> str:
    """Jekyll post for one day: front matter, then one section per entry in rank order."""
    ordered = sorted(entries, key=lambda e: e.rank)
    return front_matter(task_date) + "".join(render_entry(e) for e in ordered)
